"""
Wire Schemas

Typed shapes of the JSON exchanged with ComfyUI backends, plus the JSON
Schema for the generate tool input.
"""

from typing import TypedDict, List, Dict, Any
from typing_extensions import Required, NotRequired


class NodeMeta(TypedDict, total=False):
    """Display-only node metadata."""

    title: str


class WorkflowNode(TypedDict):
    """A single node in an API-format ComfyUI workflow."""

    inputs: Required[Dict[str, Any]]
    class_type: Required[str]
    _meta: NotRequired[NodeMeta]


# Workflow is a dict of node_id -> WorkflowNode
Workflow = Dict[str, WorkflowNode]


class PromptSubmission(TypedDict):
    """Body of POST /prompt."""

    prompt: Workflow


class BackendResponse(TypedDict, total=False):
    """Successful backend answer. Video backends may add ``video``."""

    images: List[str]
    video: str


GENERATE_SCHEMA = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["prompt", "model_id", "width", "height", "steps"],
    "properties": {
        "prompt": {"type": "string", "description": "Positive prompt text"},
        "model_id": {"type": "string", "description": "Registered model id, e.g. 'Flux-Dev'"},
        "width": {"type": "integer", "minimum": 64},
        "height": {"type": "integer", "minimum": 64},
        "steps": {"type": "integer", "minimum": 1},
        "negative_prompt": {"type": "string"},
        "seed": {"type": "integer", "minimum": 0},
        "batch_size": {"type": "integer", "minimum": 1, "default": 1},
        "reference_images": {
            "type": "array",
            "items": {"type": "string", "description": "Base64 image or data URL"},
            "maxItems": 3,
        },
        "denoise": {"type": "number", "minimum": 0, "maximum": 1},
        "length": {"type": "integer", "minimum": 1, "description": "Video frame count"},
        "fps": {"type": "integer", "minimum": 1},
        "scale_by": {"type": "number", "minimum": 1},
    },
}
