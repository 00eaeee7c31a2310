"""
comfyui-dispatch CLI

Usage:
    comfyui-dispatch generate --model Flux-Dev --prompt "a dragon" --width 1024 --height 768
    comfyui-dispatch generate --model Qwen-Image-Edit --prompt "swap outfits" --image a.png --image b.png
    comfyui-dispatch generate --model Flux-Dev --prompt "a dragon" --batch 4 --output out.png
    comfyui-dispatch models --images 2
    comfyui-dispatch templates [--model Flux-Kontext]
    comfyui-dispatch check
"""

import argparse
import base64
import binascii
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from .errors import DispatchError, ErrorKind

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_VALIDATION = 3
EXIT_PARTIAL = 4
EXIT_CONNECTION = 5
EXIT_NOT_FOUND = 6
EXIT_CONFIG = 8

_EXIT_BY_KIND = {
    ErrorKind.CONFIGURATION_ERROR: EXIT_CONFIG,
    ErrorKind.VALIDATION_ERROR: EXIT_VALIDATION,
    ErrorKind.ENDPOINT_NOT_FOUND: EXIT_NOT_FOUND,
    ErrorKind.UPSTREAM_UNAVAILABLE: EXIT_CONNECTION,
    ErrorKind.NETWORK_ERROR: EXIT_CONNECTION,
}


def _exit_code_for_error(code: str) -> int:
    """Map an error code to an exit code."""
    try:
        return _EXIT_BY_KIND.get(ErrorKind(code), EXIT_ERROR)
    except ValueError:
        return EXIT_ERROR


def _output(data: dict, pretty: bool = False) -> None:
    """Write JSON data to stdout (results/data only)."""
    if pretty:
        json.dump(data, sys.stdout, indent=2, default=str)
    else:
        json.dump(data, sys.stdout, default=str)
    sys.stdout.write("\n")
    sys.stdout.flush()


def _msg(text: str) -> None:
    """Write a status message to stderr."""
    sys.stderr.write(text)
    if not text.endswith("\n"):
        sys.stderr.write("\n")
    sys.stderr.flush()


def _is_pretty(args) -> bool:
    return args.pretty or os.environ.get("COMFYUI_DISPATCH_PRETTY", "").lower() in ("1", "true", "yes")


def _read_images(paths: List[str]) -> List[str]:
    images = []
    for path in paths:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Image not found: {path}")
        images.append(base64.b64encode(p.read_bytes()).decode("ascii"))
    return images


def _save_artifact(artifact: str, path: Path) -> None:
    """Decode a data URL and write the bytes."""
    _, _, payload = artifact.partition(",")
    path.write_bytes(base64.b64decode(payload))


def _numbered(path: Path, index: int, total: int) -> Path:
    if total == 1:
        return path
    return path.with_name(f"{path.stem}_{index:02d}{path.suffix}")


# ─── Command handlers ────────────────────────────────────────────────


def cmd_generate(args) -> int:
    """Dispatch one request, or a batch of independent ones."""
    from . import batch, dispatcher
    from .types import GenerationRequest

    pretty = _is_pretty(args)
    try:
        images = _read_images(args.image or [])
    except FileNotFoundError as e:
        _output({"error": str(e), "code": "NOT_FOUND", "isError": True}, pretty)
        return EXIT_NOT_FOUND

    request = GenerationRequest(
        prompt=args.prompt,
        model_id=args.model,
        width=args.width,
        height=args.height,
        steps=args.steps,
        negative_prompt=args.negative,
        seed=args.seed,
        batch_size=args.batch,
        reference_images=images,
        denoise=args.denoise,
        length=args.length,
        fps=args.fps,
        scale_by=args.scale_by,
    )

    try:
        service = dispatcher.Dispatcher(timeout=args.timeout)
    except DispatchError as e:
        _output(e.to_dict(), pretty)
        return _exit_code_for_error(e.code)

    if args.batch > 1:
        summary = batch.dispatch_batch(request, max_workers=args.parallel, dispatcher=service)
        entries = summary["results"]
    else:
        result = service.dispatch(request)
        entries = [{"index": 0, "seed": request.seed, **result.to_dict()}]
        summary = entries[0]

    if args.output:
        out = Path(args.output)
        for entry in entries:
            if entry.get("artifact"):
                target = _numbered(out, entry["index"], len(entries))
                try:
                    _save_artifact(entry["artifact"], target)
                except (OSError, binascii.Error) as e:
                    _msg(f"Could not write {target}: {e}")
                    return EXIT_ERROR
                _msg(f"Saved {target}")
                entry["artifact"] = str(target)

    _output(summary, pretty)

    failed = [e for e in entries if e.get("isError")]
    if not failed:
        return EXIT_OK
    if len(failed) < len(entries):
        return EXIT_PARTIAL
    return _exit_code_for_error(failed[0].get("code", ""))


def cmd_models(args) -> int:
    """List models and their availability."""
    from .model_registry import list_available_models

    models = list_available_models(args.images)
    _output({"models": models, "total": len(models)}, _is_pretty(args))
    return EXIT_OK


def cmd_templates(args) -> int:
    """List bundled workflow templates."""
    from .templates import get_catalog

    templates = get_catalog().list_templates()
    if args.model:
        templates = [t for t in templates if t["model_id"] == args.model]
    _output({"templates": templates, "total": len(templates)}, _is_pretty(args))
    return EXIT_OK


def cmd_check(args) -> int:
    """Verify the registry is fully wired."""
    from . import dispatcher
    from .templates import get_catalog

    problems = dispatcher.verify_registry(get_catalog(), dispatcher.bind_profiles())
    _output({"ok": not problems, "problems": problems}, _is_pretty(args))
    return EXIT_OK if not problems else EXIT_CONFIG


# ─── Argument parsing ────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="comfyui-dispatch", description="Dispatch generation jobs to ComfyUI backends")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate an image or video")
    gen.add_argument("--model", required=True, help="Model id, e.g. Flux-Dev")
    gen.add_argument("--prompt", required=True)
    gen.add_argument("--negative", default=None, help="Negative prompt")
    gen.add_argument("--width", type=int, default=1024)
    gen.add_argument("--height", type=int, default=1024)
    gen.add_argument("--steps", type=int, default=20)
    gen.add_argument("--seed", type=int, default=None)
    gen.add_argument("--image", action="append", help="Reference image path (repeatable, in order)")
    gen.add_argument("--denoise", type=float, default=None)
    gen.add_argument("--length", type=int, default=None, help="Video frame count")
    gen.add_argument("--fps", type=int, default=None)
    gen.add_argument("--scale-by", type=float, default=None)
    gen.add_argument("--batch", type=int, default=1, help="Independent jobs to run")
    gen.add_argument("--parallel", type=int, default=4, help="Concurrent jobs for --batch")
    gen.add_argument("--timeout", type=float, default=None, help="HTTP timeout in seconds per job")
    gen.add_argument("--output", default=None, help="Write the decoded artifact(s) here")
    gen.set_defaults(func=cmd_generate)

    models = sub.add_parser("models", help="List models")
    models.add_argument("--images", type=int, default=0, help="Reference image count to check against")
    models.set_defaults(func=cmd_models)

    templates = sub.add_parser("templates", help="List workflow templates")
    templates.add_argument("--model", default=None)
    templates.set_defaults(func=cmd_templates)

    check = sub.add_parser("check", help="Verify templates and adapters")
    check.set_defaults(func=cmd_check)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
