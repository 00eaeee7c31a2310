"""
ComfyUI Workflow Dispatcher

Turns abstract generation requests into model-specific ComfyUI workflows,
submits them to per-model backends and normalizes the answers.
"""

__version__ = "0.1.0"

from .dispatcher import Dispatcher, dispatch, get_dispatcher, interpret_response, verify_registry
from .errors import (
    ConfigurationError,
    DispatchError,
    EndpointNotFound,
    ErrorKind,
    MalformedResponse,
    NetworkError,
    UpstreamError,
    UpstreamUnavailable,
    ValidationError,
)
from .graph import Graph, Node, NodeRef, WorkflowTemplate, clone, get_node, set_input
from .model_registry import ModelProfile, get_profile, list_available_models
from .templates import Mode, WorkflowCatalog, get_catalog, lookup
from .types import DispatchResult, GenerationRequest
from .variants import VariantKind, extend_reference_chain, select_variant

__all__ = [
    "__version__",
    "Dispatcher",
    "dispatch",
    "get_dispatcher",
    "interpret_response",
    "verify_registry",
    "ConfigurationError",
    "DispatchError",
    "EndpointNotFound",
    "ErrorKind",
    "MalformedResponse",
    "NetworkError",
    "UpstreamError",
    "UpstreamUnavailable",
    "ValidationError",
    "Graph",
    "Node",
    "NodeRef",
    "WorkflowTemplate",
    "clone",
    "get_node",
    "set_input",
    "ModelProfile",
    "get_profile",
    "list_available_models",
    "Mode",
    "WorkflowCatalog",
    "get_catalog",
    "lookup",
    "DispatchResult",
    "GenerationRequest",
    "VariantKind",
    "extend_reference_chain",
    "select_variant",
]
