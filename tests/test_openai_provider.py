"""Tests for the OpenAI adapter with a mocked SDK client."""

import base64
from types import SimpleNamespace
from unittest.mock import Mock, patch

import httpx
import pytest
from openai import APIStatusError

from image_providers.base import ConfigurationError, GenerateOptions
from image_providers.openai_image import OpenAIProvider, resolve_size

PNG_BYTES = b"\x89PNG fake"


def b64_response(data=PNG_BYTES):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=base64.b64encode(data).decode(), url=None)])


@pytest.fixture
def client():
    mock = Mock()
    mock.images.generate.return_value = b64_response()
    mock.images.edit.return_value = b64_response(b"edited")
    return mock


@pytest.fixture
def provider(client):
    return OpenAIProvider(client=client)


class TestStandardGeneration:
    def test_generate_decodes_base64(self, provider, client, tmp_path):
        out = tmp_path / "out.png"
        result = provider.generate(GenerateOptions(
            model="gpt-image-1",
            prompt="abstract art",
            output=str(out),
            quality="hd",
            transparent=True,
        ))

        assert result.success, result.error
        assert out.read_bytes() == PNG_BYTES
        kwargs = client.images.generate.call_args.kwargs
        assert kwargs["model"] == "gpt-image-1"
        assert kwargs["quality"] == "high"
        assert kwargs["background"] == "transparent"
        assert kwargs["size"] == "1536x1024"
        assert kwargs["output_format"] == "png"
        assert kwargs["n"] == 1
        assert result.meta["mode"] == "generate"

    def test_defaults_to_medium_quality_and_opaque(self, provider, client, tmp_path):
        provider.generate(GenerateOptions(
            model="gpt-image-1",
            prompt="x",
            negative_prompt="text",
            output=str(tmp_path / "a.png"),
            num_images=2,
        ))

        kwargs = client.images.generate.call_args.kwargs
        assert kwargs["quality"] == "medium"
        assert kwargs["background"] == "opaque"
        assert kwargs["prompt"] == "x Avoid: text"
        assert kwargs["n"] == 2

    def test_url_response_is_downloaded(self, provider, client, tmp_path):
        client.images.generate.return_value = SimpleNamespace(
            data=[SimpleNamespace(b64_json=None, url="https://cdn.openai.com/img.png")]
        )
        with patch("image_providers.image_io.requests.get") as get:
            get.return_value = Mock(ok=True, content=b"from-url")
            result = provider.generate(GenerateOptions(model="gpt-image-1", prompt="x", output=str(tmp_path / "u.png")))

        assert result.success
        assert (tmp_path / "u.png").read_bytes() == b"from-url"

    def test_reference_with_gpt_image_1_is_not_an_edit(self, provider, client, tmp_path, png_file):
        provider.generate(GenerateOptions(
            model="gpt-image-1",
            prompt="x",
            output=str(tmp_path / "a.png"),
            reference_images=(str(png_file),),
        ))

        client.images.generate.assert_called_once()
        client.images.edit.assert_not_called()


class TestEditMode:
    def test_gpt_image_15_with_reference_uses_edit(self, provider, client, tmp_path, png_file):
        out = tmp_path / "edited.png"
        result = provider.generate(GenerateOptions(
            model="gpt-image-1.5",
            prompt="Add a hat",
            output=str(out),
            reference_images=(str(png_file),),
            quality="hd",
        ))

        assert result.success
        assert result.meta["mode"] == "edit"
        assert out.read_bytes() == b"edited"
        client.images.generate.assert_not_called()

        kwargs = client.images.edit.call_args.kwargs
        name, data, mime = kwargs["image"]
        assert name == "ref.png"
        assert data == png_file.read_bytes()
        assert mime == "image/png"
        assert kwargs["prompt"] == "Add a hat"
        assert kwargs["model"] == "gpt-image-1"

    def test_several_references_are_sent_together(self, provider, client, tmp_path, png_file, jpg_file):
        provider.generate(GenerateOptions(
            model="gpt-image-1.5",
            prompt="merge",
            output=str(tmp_path / "m.png"),
            reference_images=(str(png_file), str(jpg_file)),
        ))

        images = client.images.edit.call_args.kwargs["image"]
        assert [mime for _, _, mime in images] == ["image/png", "image/jpeg"]


class TestFailures:
    def test_empty_data(self, provider, client, tmp_path):
        client.images.generate.return_value = SimpleNamespace(data=[])
        result = provider.generate(GenerateOptions(model="gpt-image-1", prompt="x", output=str(tmp_path / "a.png")))
        assert result.error == "No image data in response"

    def test_api_status_error(self, provider, client, tmp_path):
        request = httpx.Request("POST", "https://api.openai.com/v1/images/generations")
        client.images.generate.side_effect = APIStatusError(
            "Your request was rejected by the safety system",
            response=httpx.Response(400, request=request),
            body=None,
        )
        result = provider.generate(GenerateOptions(model="gpt-image-1", prompt="x", output=str(tmp_path / "a.png")))
        assert result.error == "OpenAI API Error (400): Your request was rejected by the safety system"

    def test_unexpected_exception(self, provider, client, tmp_path):
        client.images.generate.side_effect = TimeoutError("read timed out")
        result = provider.generate(GenerateOptions(model="gpt-image-1", prompt="x", output=str(tmp_path / "a.png")))
        assert result.error == "read timed out"

    def test_missing_key(self):
        with pytest.raises(ConfigurationError, match="OPENAI_API_KEY"):
            OpenAIProvider()


class TestResolveSize:
    def test_explicit_supported_size_wins(self):
        assert resolve_size(GenerateOptions(model="gpt-image-1", prompt="x", size="1024x1536")) == "1024x1536"

    def test_unsupported_size_falls_back_to_aspect_ratio(self):
        options = GenerateOptions(model="gpt-image-1", prompt="x", size="1792x1024", aspect_ratio="9:16")
        assert resolve_size(options) == "1024x1536"

    def test_default_aspect_ratio(self):
        assert resolve_size(GenerateOptions(model="gpt-image-1", prompt="x")) == "1536x1024"
