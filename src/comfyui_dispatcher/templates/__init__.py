"""
Workflow Template Catalog

Base workflows for every model, stored as API-format JSON files in this
directory. Each file carries a ``_meta`` section:

    {"_meta": {"description": "...", "model": "Flux-Dev",
               "mode": "text-to-image", "variant": "base"}, "6": {...}, ...}

Templates are validated and frozen when the catalog loads. ``lookup`` never
falls back to another model's graph.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigurationError
from ..graph import Graph, WorkflowTemplate, dangling_refs
from ..mcp_utils import log_structured

TEMPLATES_DIR = Path(__file__).parent

REQUIRED_META = ("description", "model", "mode")


class Mode(str, Enum):
    """Generation mode a template serves."""

    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"


CatalogKey = Tuple[str, str, str]


def validate_template(template: Dict[str, Any]) -> Tuple[List[str], List[str]]:
    """
    Validate template structure.

    Args:
        template: Raw template dict including ``_meta``.

    Returns:
        Tuple of (errors, warnings)
    """
    errors = []
    warnings = []

    meta = template.get("_meta")
    if not isinstance(meta, dict):
        errors.append("Missing _meta section")
        return errors, warnings

    for key in REQUIRED_META:
        if key not in meta:
            errors.append(f"Missing _meta.{key}")
    if meta.get("mode") not in (m.value for m in Mode):
        errors.append(f"Unknown _meta.mode: {meta.get('mode')!r}")

    node_count = 0
    for key, value in template.items():
        if key.startswith("_"):
            continue
        node_count += 1

        if not isinstance(value, dict):
            errors.append(f"Node '{key}' must be a dict")
            continue
        if "class_type" not in value:
            errors.append(f"Node '{key}' missing class_type")
        if "inputs" not in value:
            errors.append(f"Node '{key}' missing inputs")
            continue
        if "_meta" not in value:
            warnings.append(f"Node '{key}' has no _meta title")

        for input_name, input_value in value["inputs"].items():
            if isinstance(input_value, list):
                if len(input_value) != 2:
                    errors.append(
                        f"Node '{key}' input '{input_name}' has invalid connection format (expected [node_id, slot])"
                    )
                elif not isinstance(input_value[1], int):
                    errors.append(f"Node '{key}' input '{input_name}' slot must be integer")

    if node_count == 0:
        errors.append("Template has no nodes")
    if errors:
        return errors, warnings

    errors.extend(dangling_refs(Graph.from_prompt(template)))
    return errors, warnings


def load_template(path: Path) -> WorkflowTemplate:
    """
    Load and freeze one template file.

    Raises:
        ConfigurationError: unreadable JSON or structural errors.
    """
    try:
        raw = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read template {path.name}: {e}", {"template": path.stem}) from e

    errors, warnings = validate_template(raw)
    if errors:
        raise ConfigurationError(
            f"Template {path.stem} is invalid: {errors[0]}",
            {"template": path.stem, "errors": errors},
        )

    meta = raw["_meta"]
    template = WorkflowTemplate.from_prompt(
        name=path.stem,
        model_id=meta["model"],
        mode=meta["mode"],
        workflow=raw,
        variant=meta.get("variant", "base"),
        description=meta["description"],
    )
    log_structured(
        "debug",
        "template_loaded",
        template=template.name,
        model_id=template.model_id,
        mode=template.mode,
        variant=template.variant,
        node_count=len(template.node_ids),
        warnings=warnings,
    )
    return template


class WorkflowCatalog:
    """Read-only registry of ``(model_id, mode, variant) -> WorkflowTemplate``."""

    def __init__(self, templates: Optional[List[WorkflowTemplate]] = None):
        self._templates: Dict[CatalogKey, WorkflowTemplate] = {}
        for template in templates or []:
            key = (template.model_id, Mode(template.mode).value, template.variant)
            if key in self._templates:
                raise ConfigurationError(
                    f"Duplicate template for {key}: {self._templates[key].name} and {template.name}",
                    {"model_id": template.model_id, "mode": template.mode, "variant": template.variant},
                )
            self._templates[key] = template

    @classmethod
    def from_directory(cls, directory: Path = TEMPLATES_DIR) -> "WorkflowCatalog":
        return cls([load_template(path) for path in sorted(directory.glob("*.json"))])

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self):
        return iter(self._templates.values())

    def lookup(self, model_id: str, mode: Mode | str, variant: str = "base") -> Optional[WorkflowTemplate]:
        return self._templates.get((model_id, Mode(mode).value, variant))

    def require(self, model_id: str, mode: Mode | str, variant: str = "base") -> WorkflowTemplate:
        """Like ``lookup`` but a missing template is a configuration error."""
        template = self.lookup(model_id, mode, variant)
        if template is None:
            raise ConfigurationError(
                f"no workflow for model '{model_id}' ({Mode(mode).value}, {variant})",
                {"model_id": model_id, "mode": Mode(mode).value, "variant": variant},
            )
        return template

    def list_templates(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": t.name,
                "model_id": t.model_id,
                "mode": t.mode,
                "variant": t.variant,
                "description": t.description,
                "node_count": len(t.node_ids),
            }
            for t in self._templates.values()
        ]


_catalog: Optional[WorkflowCatalog] = None


def get_catalog() -> WorkflowCatalog:
    """Get or load the bundled catalog."""
    global _catalog
    if _catalog is None:
        _catalog = WorkflowCatalog.from_directory()
    return _catalog


def lookup(model_id: str, mode: Mode | str, variant: str = "base") -> Optional[WorkflowTemplate]:
    return get_catalog().lookup(model_id, mode, variant)
