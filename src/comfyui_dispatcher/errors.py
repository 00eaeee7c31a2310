"""
Dispatch Error Taxonomy

Every failure a dispatch can end in, with actionable guidance.

All errors follow the MCP error shape:
- Include "isError": true
- Include "code" for error categorization
- Include "suggestion" for actionable guidance
- Include "details" for additional context

The classes are also exceptions: the catalog, selector, adapters and router
raise them, and ``dispatch()`` returns them inside a ``DispatchResult``.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field


class ErrorKind(str, Enum):
    """Classification of a failed dispatch."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ENDPOINT_NOT_FOUND = "ENDPOINT_NOT_FOUND"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
    NETWORK_ERROR = "NETWORK_ERROR"

    @property
    def is_backend_issue(self) -> bool:
        """True for reachability problems, False for deployment/config bugs."""
        return self not in (ErrorKind.CONFIGURATION_ERROR, ErrorKind.VALIDATION_ERROR)


@dataclass(eq=False)
class DispatchError(Exception):
    """
    Base dispatch error with MCP-compliant serialization.

    Subclasses fill ``kind``, ``suggestion`` and ``troubleshooting`` in
    ``__post_init__``; callers only pass the message and details.
    """

    error: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    kind: ErrorKind = field(default=ErrorKind.CONFIGURATION_ERROR, init=False)
    suggestion: str = field(default="", init=False)
    troubleshooting: Optional[str | List[str]] = field(default=None, init=False)

    def __str__(self) -> str:
        return self.error

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to MCP-compliant error dict."""
        result: Dict[str, Any] = {
            "isError": True,
            "code": self.code,
            "error": self.error,
            "suggestion": self.suggestion,
        }
        if self.details:
            result["details"] = self.details
        if self.troubleshooting:
            result["troubleshooting"] = self.troubleshooting
        return result


@dataclass(eq=False)
class ConfigurationError(DispatchError):
    """
    Deployment problem: missing template, adapter or base URL.

    Example:
        ConfigurationError("Backend URL for model 'Flux-Dev' is not configured",
                           {"model_id": "Flux-Dev", "env_var": "Flux_Dev_URL"})
    """

    def __post_init__(self):
        self.kind = ErrorKind.CONFIGURATION_ERROR
        env_var = self.details.get("env_var")
        if env_var:
            self.suggestion = f"Set {env_var} to the base URL of the model's backend."
        else:
            self.suggestion = "Register a workflow template and adapter for this model, or stop advertising it."
        self.troubleshooting = "Run check_configuration() to list every missing template, adapter and URL."


@dataclass(eq=False)
class ValidationError(DispatchError):
    """
    Template and adapter drifted apart: an expected node is missing or changed class.

    Example:
        ValidationError("Node '43' expected CLIPTextEncode but template has none",
                        {"node_id": "43", "expected_class": "CLIPTextEncode"})
    """

    def __post_init__(self):
        self.kind = ErrorKind.VALIDATION_ERROR
        self.suggestion = "Update the model's adapter or restore the template node it writes to."
        self.troubleshooting = [
            "1. Compare the template JSON with the node ids the adapter touches",
            "2. Re-export the workflow in API format if it was edited in the UI",
        ]


@dataclass(eq=False)
class EndpointNotFound(DispatchError):
    """Backend answered 404: the configured base URL points at the wrong service."""

    def __post_init__(self):
        self.kind = ErrorKind.ENDPOINT_NOT_FOUND
        self.suggestion = "Check the model's base URL; the submit path does not exist on that host."


@dataclass(eq=False)
class UpstreamUnavailable(DispatchError):
    """Backend or the proxy in front of it reports no healthy upstream."""

    def __post_init__(self):
        self.kind = ErrorKind.UPSTREAM_UNAVAILABLE
        self.suggestion = "The inference service is down or restarting. Try again later."


@dataclass(eq=False)
class UpstreamError(DispatchError):
    """Backend rejected the job with a non-2xx status."""

    def __post_init__(self):
        self.kind = ErrorKind.UPSTREAM_ERROR
        self.suggestion = "Inspect details.body; the backend rejected the submitted workflow."


@dataclass(eq=False)
class MalformedResponse(DispatchError):
    """Backend returned 2xx but the body carries no usable artifact."""

    def __post_init__(self):
        self.kind = ErrorKind.MALFORMED_RESPONSE
        self.suggestion = "The backend must answer with JSON {\"images\": [\"<base64>\"]}. Check its output node."


@dataclass(eq=False)
class NetworkError(DispatchError):
    """DNS failure, refused connection or timeout before any response."""

    def __post_init__(self):
        self.kind = ErrorKind.NETWORK_ERROR
        self.suggestion = "Verify the backend host is reachable from this machine."
        self.troubleshooting = "curl -X POST <base_url>/prompt to test connectivity."


ERROR_CLASSES = {
    ErrorKind.CONFIGURATION_ERROR: ConfigurationError,
    ErrorKind.VALIDATION_ERROR: ValidationError,
    ErrorKind.ENDPOINT_NOT_FOUND: EndpointNotFound,
    ErrorKind.UPSTREAM_UNAVAILABLE: UpstreamUnavailable,
    ErrorKind.UPSTREAM_ERROR: UpstreamError,
    ErrorKind.MALFORMED_RESPONSE: MalformedResponse,
    ErrorKind.NETWORK_ERROR: NetworkError,
}
