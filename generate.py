from __future__ import annotations

import argparse
import logging
import re
import subprocess
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from dotenv import load_dotenv
from tqdm import tqdm

from image_providers import config
from image_providers.base import GenerateOptions
from image_providers.registry import ProviderRegistry, default_registry
from postprocess.background import HEX_COLOR_RE, add_background_color, remove_background
from postprocess.thumbnail import generate_thumbnail

logger = logging.getLogger("generate")

EXTENSION_RE = re.compile(r"\.(png|jpg|jpeg|webp)$", re.IGNORECASE)

EXAMPLES = """\
examples:
  # default model (nano-banana-pro)
  imagegen -p "A serene mountain landscape at sunset"

  # OpenAI in HD with a transparent background
  imagegen -m gpt-image-1 -p "A cute robot mascot" -q hd --transparent

  # edit an existing image
  imagegen -m gpt-image-1.5 -p "Add a hat to the person" -r ./photo.png

  # several reference images (Gemini)
  imagegen -p "Blend these styles" -r style1.png -r style2.png

  # 5 variations
  imagegen -p "Abstract art" --variations 5 -o ~/Downloads/abstract.png

environment variables:
  GOOGLE_API_KEY / GEMINI_API_KEY   Gemini/Imagen models (API path)
  OPENAI_API_KEY                    GPT-Image models
  REPLICATE_API_TOKEN               Flux models
  REMOVE_BG_API_KEY                 --remove-bg
"""


class GenerationFailed(RuntimeError):
    pass


def variations_arg(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        n = 0
    if n < 1 or n > config.MAX_VARIATIONS:
        raise argparse.ArgumentTypeError(f"Variations must be 1-{config.MAX_VARIATIONS}")
    return n


def hex_color_arg(value: str) -> str:
    if not HEX_COLOR_RE.fullmatch(value.strip()):
        raise argparse.ArgumentTypeError(f"invalid hex color: {value!r} (e.g. '#EAE9DF')")
    return value.strip()


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="imagegen",
        description="AI image generation CLI - Gemini, OpenAI and Flux behind one interface",
        epilog=EXAMPLES,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("-p", "--prompt", help="Image generation prompt (required)")
    ap.add_argument("-m", "--model", default=config.DEFAULT_MODEL, choices=list(config.MODEL_TO_PROVIDER),
                    metavar="MODEL", help=f"Model to use (default: {config.DEFAULT_MODEL})")
    ap.add_argument("-s", "--size", choices=config.SIZES, help="Image size/resolution")
    ap.add_argument("-a", "--aspect-ratio", default=config.DEFAULT_ASPECT_RATIO, choices=config.ASPECT_RATIOS,
                    help=f"Aspect ratio (default: {config.DEFAULT_ASPECT_RATIO})")
    ap.add_argument("-o", "--output", default=config.DEFAULT_OUTPUT, help="Output file path")
    ap.add_argument("-r", "--reference-image", action="append", default=[], dest="reference_images",
                    metavar="PATH", help="Reference image for style/composition (repeatable)")
    ap.add_argument("--transparent", action="store_true", help="Transparent background (where supported)")
    ap.add_argument("--remove-bg", action="store_true", help="Remove background after generation (remove.bg)")
    ap.add_argument("--add-bg", type=hex_color_arg, metavar="HEX",
                    help="Flatten onto a background colour, e.g. '#EAE9DF'")
    ap.add_argument("-n", "--negative-prompt", help="Things to avoid")
    ap.add_argument("--thumbnail", nargs="?", type=int, const=True, metavar="SIZE",
                    help=f"Also write a thumbnail (default: {config.DEFAULT_THUMBNAIL_SIZE}px)")
    ap.add_argument("--variations", type=variations_arg, default=1,
                    help=f"Generate N variations (1-{config.MAX_VARIATIONS})")
    ap.add_argument("--seed", type=int, help="Random seed for reproducibility")
    ap.add_argument("--steps", type=int, help="Number of inference steps")
    ap.add_argument("--guidance", type=float, help="Guidance scale")
    ap.add_argument("-q", "--quality", default=config.DEFAULT_QUALITY, choices=config.QUALITIES,
                    help="Image quality (OpenAI models)")
    ap.add_argument("--style", default=config.DEFAULT_STYLE, choices=config.STYLES, help="Image style")
    ap.add_argument("--num-images", type=int, default=config.DEFAULT_NUM_IMAGES,
                    help="Number of images per backend request")
    ap.add_argument("--api", action="store_true", dest="use_api",
                    help="Call the Gemini API for nano-banana models instead of the Gemini CLI")
    ap.add_argument("--list-models", action="store_true", help="List available models and exit")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return ap


def options_from_args(args: argparse.Namespace) -> GenerateOptions:
    return GenerateOptions(
        model=args.model,
        prompt=args.prompt,
        negative_prompt=args.negative_prompt,
        aspect_ratio=args.aspect_ratio,
        size=args.size,
        output=args.output,
        reference_images=tuple(args.reference_images or ()),
        transparent=args.transparent,
        remove_bg=args.remove_bg,
        add_bg=args.add_bg,
        thumbnail=args.thumbnail,
        variations=args.variations,
        seed=args.seed,
        steps=args.steps,
        guidance=args.guidance,
        quality=args.quality,
        style=args.style,
        num_images=args.num_images,
        use_api=args.use_api,
    )


def variation_paths(base_output: str, count: int) -> List[str]:
    """`out.png` x3 -> `out-v1.png`, `out-v2.png`, `out-v3.png`; a single variation keeps the base path."""
    if count <= 1:
        return [base_output]
    match = EXTENSION_RE.search(base_output)
    ext = match.group(0) if match else ".png"
    stem = EXTENSION_RE.sub("", base_output)
    return [f"{stem}-v{i}{ext}" for i in range(1, count + 1)]


def post_process(image_path: Path, options: GenerateOptions, bar: Optional[tqdm] = None) -> None:
    def step(text: str) -> None:
        if bar is not None:
            bar.set_postfix_str(text)
        logger.debug(f"{text}: {image_path}")

    if options.remove_bg:
        step("removing background")
        remove_background(image_path, image_path)

    if options.add_bg:
        step("adding background colour")
        add_background_color(image_path, image_path, options.add_bg)

    if options.thumbnail:
        step("generating thumbnail")
        size = config.DEFAULT_THUMBNAIL_SIZE if options.thumbnail is True else int(options.thumbnail)
        generate_thumbnail(image_path, size=size)


def generate_variations(
    options: GenerateOptions,
    registry: Optional[ProviderRegistry] = None,
) -> List[Path]:
    """Run every variation in order, stopping at the first failure."""
    registry = registry or default_registry()
    provider = registry.get_provider_for_model(options.model)

    count = options.variations or 1
    paths = variation_paths(options.output or config.DEFAULT_OUTPUT, count)
    desc = f"{options.model} x{count}" if count > 1 else options.model

    generated: List[Path] = []
    with tqdm(paths, desc=desc, unit="image", disable=count == 1) as bar:
        for i, out_path in enumerate(bar, start=1):
            bar.set_postfix_str(f"variation {i}/{count}")
            result = provider.generate(replace(options, output=out_path))
            if not result.success:
                raise GenerationFailed(result.error)

            logger.debug(f"{provider.name} finished variation {i} in {result.meta.get('duration_ms')}ms")
            post_process(result.image_path, options, bar)
            generated.append(result.image_path)

    return generated


def format_model_list(models: Sequence[Tuple[str, str]]) -> str:
    by_provider = {}
    for model, provider in models:
        by_provider.setdefault(provider, []).append(model)

    lines = ["", "Available models:", ""]
    for provider, names in by_provider.items():
        lines.append(f"  {provider.upper()}:")
        lines.extend(f"    - {name}" for name in names)
        lines.append("")
    return "\n".join(lines)


def print_summary(paths: Sequence[Path], model: str) -> None:
    rule = "-" * 50
    print()
    print(rule)
    if len(paths) > 1:
        print(f"Generated {len(paths)} variations")
        print("  Outputs:")
        for path in paths:
            print(f"    {path}")
    else:
        print(f"  Output: {paths[0]}")
    print(f"  Model: {model}")
    print(rule)


def open_in_viewer(path: Path) -> None:
    """Best effort on macOS; nothing waits for the viewer."""
    if sys.platform != "darwin":
        return
    try:
        subprocess.Popen(
            ["open", str(path)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        logger.debug(f"Could not open {path}: {e}")


def main(argv: Optional[Sequence[str]] = None, registry: Optional[ProviderRegistry] = None) -> int:
    load_dotenv()
    ap = build_parser()
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    registry = registry or default_registry()
    if args.list_models:
        print(format_model_list(registry.list_models()))
        return 0

    if not args.prompt or not args.prompt.strip():
        ap.error("the following arguments are required: -p/--prompt")

    options = options_from_args(args)
    try:
        paths = generate_variations(options, registry)
    except GenerationFailed as e:
        print(f"Generation failed: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_summary(paths, options.model)
    open_in_viewer(paths[0])
    return 0


if __name__ == "__main__":
    sys.exit(main())
