"""Shared pytest fixtures.

No test talks to a real backend: credentials are cleared for every test,
`.env` loading is disabled, and provider clients are always mocks.
"""

from pathlib import Path

import pytest
from PIL import Image

from image_providers import config

CREDENTIAL_VARS = (
    "GOOGLE_API_KEY",
    "GEMINI_API_KEY",
    "GEMINI_CLI",
    "OPENAI_API_KEY",
    "REPLICATE_API_TOKEN",
    "REPLICATE_POLL_INTERVAL",
    "REMOVE_BG_API_KEY",
)

DOTENV_CALLERS = (
    "image_providers.google_gemini",
    "image_providers.openai_image",
    "image_providers.replicate_flux",
    "postprocess.background",
    "generate",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Remove credentials and stop a developer's .env from leaking in."""
    for name in CREDENTIAL_VARS:
        monkeypatch.delenv(name, raising=False)
    for module in DOTENV_CALLERS:
        monkeypatch.setattr(f"{module}.load_dotenv", lambda *a, **k: False)


@pytest.fixture
def default_output(tmp_path, monkeypatch) -> Path:
    """Point the global default output path into tmp_path."""
    path = tmp_path / "default" / "generated-image.png"
    monkeypatch.setattr(config, "DEFAULT_OUTPUT", str(path))
    return path


@pytest.fixture
def png_file(tmp_path) -> Path:
    """A 64x32 fully transparent PNG."""
    path = tmp_path / "ref.png"
    Image.new("RGBA", (64, 32), (255, 0, 0, 0)).save(path)
    return path


@pytest.fixture
def jpg_file(tmp_path) -> Path:
    path = tmp_path / "ref.jpg"
    Image.new("RGB", (16, 16), (0, 0, 255)).save(path, format="JPEG")
    return path
