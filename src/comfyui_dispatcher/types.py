"""
Request and Result Types

``GenerationRequest`` arrives already validated by the calling layer;
``DispatchResult`` is what every ``dispatch()`` call returns, success or not.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import DispatchError, ErrorKind


@dataclass(frozen=True)
class GenerationRequest:
    """
    Abstract generation request.

    ``batch_size`` is informational here: the dispatcher submits exactly one
    job per call and batch helpers issue ``batch_size`` calls.
    """

    prompt: str
    model_id: str
    width: int
    height: int
    steps: int
    negative_prompt: Optional[str] = None
    seed: Optional[int] = None
    batch_size: int = 1
    reference_images: List[str] = field(default_factory=list)
    denoise: Optional[float] = None
    length: Optional[int] = None
    fps: Optional[int] = None
    scale_by: Optional[float] = None

    @property
    def image_count(self) -> int:
        return len(self.reference_images)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenerationRequest":
        known = set(cls.__dataclass_fields__)
        params = {k: v for k, v in data.items() if k in known and v is not None}
        params["reference_images"] = list(params.get("reference_images") or [])
        return cls(**params)


@dataclass
class DispatchResult:
    """Either exactly one artifact or one classified error."""

    artifact: Optional[str] = None
    error: Optional[DispatchError] = None
    model_id: str = ""
    template: str = ""
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, artifact: str, **kwargs) -> "DispatchResult":
        return cls(artifact=artifact, **kwargs)

    @classmethod
    def fail(cls, error: DispatchError, **kwargs) -> "DispatchResult":
        return cls(error=error, **kwargs)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> str:
        return self.error.error if self.error else ""

    def to_dict(self) -> Dict[str, Any]:
        """MCP response: artifact on success, error dict with isError otherwise."""
        if self.error is not None:
            result = self.error.to_dict()
        else:
            result = {"artifact": self.artifact}
        if self.model_id:
            result["model_id"] = self.model_id
        if self.template:
            result["template"] = self.template
        if self.warnings:
            result["warnings"] = self.warnings
        return result
