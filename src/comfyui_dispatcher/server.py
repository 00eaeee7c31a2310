"""ComfyUI Workflow Dispatcher MCP Server - Main entry point."""

import os
from typing import List, Optional
from mcp.server.fastmcp import FastMCP

from . import batch
from . import dispatcher
from .errors import DispatchError
from .mcp_utils import mcp_error, mcp_tool_wrapper
from .model_registry import get_profile, is_model_configured, list_available_models
from .schemas import GENERATE_SCHEMA
from .templates import get_catalog
from .types import GenerationRequest

mcp = FastMCP(
    "comfyui-dispatcher",
    instructions="Dispatch image and video generation requests to per-model ComfyUI backends",
)


def _build_request(
    prompt: str,
    model_id: str,
    width: int,
    height: int,
    steps: int,
    negative_prompt: Optional[str],
    seed: Optional[int],
    batch_size: int,
    reference_images: Optional[List[str]],
    denoise: Optional[float],
    length: Optional[int],
    fps: Optional[int],
    scale_by: Optional[float],
) -> GenerationRequest:
    return GenerationRequest.from_dict({
        "prompt": prompt,
        "model_id": model_id,
        "width": width,
        "height": height,
        "steps": steps,
        "negative_prompt": negative_prompt,
        "seed": seed,
        "batch_size": batch_size,
        "reference_images": reference_images,
        "denoise": denoise,
        "length": length,
        "fps": fps,
        "scale_by": scale_by,
    })


def _get_dispatcher():
    try:
        return dispatcher.get_dispatcher(), None
    except DispatchError as e:
        return None, e.to_dict()


# =============================================================================
# Generation
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
def generate(
    prompt: str,
    model_id: str,
    width: int = 1024,
    height: int = 1024,
    steps: int = 20,
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
    reference_images: Optional[List[str]] = None,
    denoise: Optional[float] = None,
    length: Optional[int] = None,
    fps: Optional[int] = None,
    scale_by: Optional[float] = None,
) -> dict:
    """
    Generate one image (or video) on the model's backend.

    reference_images: base64 strings or data URLs, in order. Returns
    {"artifact": "data:image/png;base64,..."} or an error with isError.
    """
    service, error = _get_dispatcher()
    if error:
        return error
    request = _build_request(prompt, model_id, width, height, steps, negative_prompt, seed, 1,
                             reference_images, denoise, length, fps, scale_by)
    return service.dispatch(request).to_dict()


@mcp.tool()
@mcp_tool_wrapper
def generate_batch(
    prompt: str,
    model_id: str,
    batch_size: int = 4,
    width: int = 1024,
    height: int = 1024,
    steps: int = 20,
    negative_prompt: Optional[str] = None,
    seed: Optional[int] = None,
    reference_images: Optional[List[str]] = None,
    max_workers: int = 4,
    stagger_seconds: float = 0.0,
) -> dict:
    """Run batch_size independent generations with distinct seeds."""
    if batch_size < 1 or batch_size > 16:
        return mcp_error("batch_size must be 1-16", "VALIDATION_ERROR", {"batch_size": batch_size})
    service, error = _get_dispatcher()
    if error:
        return error
    request = _build_request(prompt, model_id, width, height, steps, negative_prompt, seed, batch_size,
                             reference_images, None, None, None, None)
    return batch.dispatch_batch(request, max_workers=max_workers, stagger_seconds=stagger_seconds,
                                dispatcher=service)


# =============================================================================
# Discovery
# =============================================================================


@mcp.tool()
@mcp_tool_wrapper
def list_models(reference_image_count: int = 0) -> dict:
    """List models, marking which are configured and usable with this many reference images."""
    models = list_available_models(reference_image_count)
    return {
        "models": models,
        "available": sum(1 for m in models if m["available"]),
        "total": len(models),
    }


@mcp.tool()
@mcp_tool_wrapper
def list_workflows(model_id: Optional[str] = None) -> dict:
    """List bundled workflow templates, optionally for one model."""
    templates = get_catalog().list_templates()
    if model_id:
        if get_profile(model_id) is None:
            return mcp_error(f"Unknown model: {model_id}", "NOT_FOUND", {"model_id": model_id})
        templates = [t for t in templates if t["model_id"] == model_id]
    return {"templates": templates, "total": len(templates)}


@mcp.tool()
@mcp_tool_wrapper
def get_request_schema() -> dict:
    """JSON Schema of the generate request."""
    return GENERATE_SCHEMA


@mcp.tool()
@mcp_tool_wrapper
def check_configuration() -> dict:
    """Verify templates and adapters, and report which backend URLs are set."""
    catalog = get_catalog()
    profiles = dispatcher.bind_profiles()
    problems = dispatcher.verify_registry(catalog, profiles)
    urls = {
        profile.model_id: {
            "env_var": profile.base_url_env_var,
            "configured": is_model_configured(profile, os.environ),
        }
        for profile in profiles.values()
    }
    return {
        "ok": not problems,
        "problems": problems,
        "templates": len(catalog),
        "backends": urls,
    }


def main():
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
