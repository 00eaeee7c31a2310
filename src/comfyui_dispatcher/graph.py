"""
Workflow Graph Model

Nodes, NodeRef edges and the two graph containers:

- ``WorkflowTemplate``: immutable, registered once in the catalog.
- ``Graph``: a private working copy created per dispatch and mutated by adapters.

Wire format (API-format ComfyUI prompt):
    {"<id>": {"inputs": {...}, "class_type": "KSampler", "_meta": {"title": "..."}}}
where a NodeRef is the 2-element array ``["<node_id>", <output_index>]``.
"""

import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, NamedTuple, Optional, Tuple

from .schemas import Workflow


class NodeRef(NamedTuple):
    """Edge: the ``output_index``-th output of node ``node_id``."""

    node_id: str
    output_index: int

    def to_wire(self) -> list:
        return [self.node_id, self.output_index]


class NodeNotFoundError(KeyError):
    """Raised by ``set_input`` when the target node is absent."""

    def __init__(self, node_id: str):
        super().__init__(node_id)
        self.node_id = node_id

    def __str__(self) -> str:
        return f"Node '{self.node_id}' not found in graph"


def is_node_ref(value: Any) -> bool:
    """Check the wire shape of an edge: [str, int]."""
    return (
        isinstance(value, (list, tuple))
        and len(value) == 2
        and isinstance(value[0], str)
        and isinstance(value[1], int)
        and not isinstance(value[1], bool)
    )


def _decode_value(value: Any) -> Any:
    if isinstance(value, NodeRef):
        return value
    if is_node_ref(value):
        return NodeRef(value[0], value[1])
    return copy.deepcopy(value)


def _encode_value(value: Any) -> Any:
    if isinstance(value, NodeRef):
        return value.to_wire()
    return copy.deepcopy(value)


@dataclass
class Node:
    """One vertex of a workflow graph."""

    id: str
    class_type: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    title: str = ""

    def refs(self) -> Iterator[Tuple[str, NodeRef]]:
        """Yield (input_name, NodeRef) for every edge leaving this node's inputs."""
        for name, value in self.inputs.items():
            if isinstance(value, NodeRef):
                yield name, value

    def to_wire(self) -> dict:
        return {
            "inputs": {name: _encode_value(value) for name, value in self.inputs.items()},
            "class_type": self.class_type,
            "_meta": {"title": self.title or self.class_type},
        }

    @classmethod
    def from_wire(cls, node_id: str, data: Mapping[str, Any]) -> "Node":
        meta = data.get("_meta") or {}
        return cls(
            id=node_id,
            class_type=data["class_type"],
            inputs={name: _decode_value(value) for name, value in data.get("inputs", {}).items()},
            title=meta.get("title", ""),
        )


class Graph:
    """
    Mutable working graph owned by a single dispatch call.

    Equality is structural: same node ids, class types, inputs and edges.
    Titles are display-only and ignored.
    """

    def __init__(self, nodes: Optional[Dict[str, Node]] = None):
        self._nodes: Dict[str, Node] = dict(nodes or {})

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self._nodes.values())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Graph):
            return NotImplemented
        return self.structure() == other.structure()

    def __repr__(self) -> str:
        return f"Graph({len(self._nodes)} nodes)"

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def set_input(self, node_id: str, name: str, value: Any) -> None:
        """Write one input on an existing node. Never creates nodes."""
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        node.inputs[name] = value

    def add_node(self, node: Node) -> None:
        if node.id in self._nodes:
            raise ValueError(f"Node '{node.id}' already exists")
        self._nodes[node.id] = node

    def nodes_of_class(self, class_type: str) -> List[Node]:
        return [node for node in self._nodes.values() if node.class_type == class_type]

    def edges(self) -> List[Tuple[str, str, NodeRef]]:
        """All edges as (node_id, input_name, NodeRef), sorted for comparison."""
        found = [(node.id, name, ref) for node in self._nodes.values() for name, ref in node.refs()]
        return sorted(found)

    def structure(self) -> Dict[str, Tuple[str, Tuple[Tuple[str, Any], ...]]]:
        """Hashable-ish structural fingerprint used for equality."""
        return {
            node.id: (node.class_type, tuple(sorted((k, repr(v)) for k, v in node.inputs.items())))
            for node in self._nodes.values()
        }

    def to_prompt(self) -> Workflow:
        """Serialize to the API-format workflow dict sent to backends."""
        return {node_id: node.to_wire() for node_id, node in self._nodes.items()}

    @classmethod
    def from_prompt(cls, workflow: Mapping[str, Any]) -> "Graph":
        """Parse an API-format workflow. Keys starting with '_' are metadata."""
        return cls({
            node_id: Node.from_wire(node_id, data)
            for node_id, data in workflow.items()
            if not node_id.startswith("_")
        })


def dangling_refs(graph: Graph) -> List[str]:
    """
    Find NodeRefs whose target node is not in the graph.

    Returns:
        Error strings, empty when every edge resolves.
    """
    errors = []
    for node_id, name, ref in graph.edges():
        if ref.node_id not in graph:
            errors.append(f"Node {node_id}: Input '{name}' references non-existent node {ref.node_id}")
    return errors


@dataclass(frozen=True)
class WorkflowTemplate:
    """
    Immutable catalog entry.

    The node data is held as wire-format JSON behind a read-only mapping and
    only ever leaves through ``clone()`` or ``to_prompt()``, both deep copies.
    """

    name: str
    model_id: str
    mode: str
    variant: str = "base"
    description: str = ""
    _workflow: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_prompt(
        cls,
        name: str,
        model_id: str,
        mode: str,
        workflow: Mapping[str, Any],
        variant: str = "base",
        description: str = "",
    ) -> "WorkflowTemplate":
        nodes = {k: copy.deepcopy(v) for k, v in workflow.items() if not k.startswith("_")}
        return cls(name, model_id, mode, variant, description, MappingProxyType(nodes))

    @property
    def node_ids(self) -> List[str]:
        return list(self._workflow)

    def class_of(self, node_id: str) -> Optional[str]:
        node = self._workflow.get(node_id)
        return node["class_type"] if node else None

    def to_prompt(self) -> Workflow:
        return copy.deepcopy(dict(self._workflow))

    def clone(self) -> Graph:
        """Fresh working graph sharing no objects with the template."""
        return Graph.from_prompt(self.to_prompt())


def clone(template: WorkflowTemplate) -> Graph:
    return template.clone()


def get_node(graph: Graph, node_id: str) -> Optional[Node]:
    return graph.get_node(node_id)


def set_input(graph: Graph, node_id: str, name: str, value: Any) -> None:
    graph.set_input(node_id, name, value)
