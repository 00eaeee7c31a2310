"""
Variant Selector - Template Choice and Reference-Chain Synthesis

Picks the template a request runs on and, for the N-reference edit family,
extends it with one load/preprocess pair per extra reference image.

Selection order (first match wins):
1. Reference images present:
   a. stitch model with 2+ images   -> the "stitch" template
   b. chain model with 2..N images  -> base template + synthesized pairs
   c. otherwise                     -> image-to-image base template
2. No images                        -> text-to-image base template
3. Nothing registered               -> ConfigurationError
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from .errors import ConfigurationError, ValidationError
from .graph import Graph, Node, NodeRef, dangling_refs
from .mcp_utils import log_structured
from .model_registry import ModelProfile, ReferenceChain, ReferenceStrategy
from .templates import Mode, WorkflowCatalog
from .types import GenerationRequest


class VariantKind(Enum):
    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"
    STITCHED = "stitched"
    REFERENCE_CHAIN = "reference-chain"


@dataclass
class VariantSelection:
    """Result of variant selection with explain trace."""

    graph: Graph
    template: str
    kind: VariantKind
    image_count: int
    explain_trace: List[Dict[str, Any]] = field(default_factory=list)


def extend_reference_chain(graph: Graph, chain: ReferenceChain, image_count: int) -> Graph:
    """
    Add a load/preprocess pair for every reference image beyond the first.

    Image k (k >= 2) gets ``chain.extra_node_ids[k - 2]``: the load node is a
    copy of ``chain.load_node``, the preprocess node a copy of
    ``chain.preprocess_node`` reading the new load node, and every encoder
    gets ``image{k}`` pointing at the new preprocess output. Node ids are
    fixed per position so repeated synthesis yields equal graphs.

    Raises:
        ValidationError: base nodes missing/mismatched or ids already taken.
    """
    if image_count < 1 or image_count > chain.max_images:
        raise ValidationError(
            f"Reference chain supports 1 to {chain.max_images} images, got {image_count}",
            {"image_count": image_count, "max_images": chain.max_images},
        )

    expected = {chain.load_node: chain.load_class, chain.preprocess_node: chain.preprocess_class}
    expected.update({node_id: chain.encoder_class for node_id in chain.encoder_nodes})
    for node_id, class_type in expected.items():
        node = graph.get_node(node_id)
        if node is None or node.class_type != class_type:
            raise ValidationError(
                f"Reference chain needs node '{node_id}' of class {class_type}",
                {"node_id": node_id, "expected_class": class_type,
                 "actual_class": node.class_type if node else None},
            )

    load = graph.get_node(chain.load_node)
    preprocess = graph.get_node(chain.preprocess_node)
    source_input = next(
        (name for name, ref in preprocess.refs() if ref.node_id == chain.load_node),
        None,
    )
    if source_input is None:
        raise ValidationError(
            f"Node '{chain.preprocess_node}' does not read from load node '{chain.load_node}'",
            {"node_id": chain.preprocess_node, "expected_input_from": chain.load_node},
        )

    for position, (load_id, preprocess_id) in enumerate(chain.extra_node_ids[: image_count - 1], start=2):
        for node_id in (load_id, preprocess_id):
            if node_id in graph:
                raise ValidationError(
                    f"Cannot synthesize reference {position}: node id '{node_id}' already in use",
                    {"node_id": node_id},
                )

        graph.add_node(Node(load_id, load.class_type, copy.deepcopy(load.inputs), load.title))
        new_inputs = copy.deepcopy(preprocess.inputs)
        new_inputs[source_input] = NodeRef(load_id, 0)
        graph.add_node(Node(preprocess_id, preprocess.class_type, new_inputs, preprocess.title))

        for encoder_id in chain.encoder_nodes:
            graph.set_input(encoder_id, f"image{position}", NodeRef(preprocess_id, 0))

    errors = dangling_refs(graph)
    if errors:
        raise ValidationError(f"Synthesized graph has dangling references: {errors[0]}", {"errors": errors})
    return graph


def select_variant(
    request: GenerationRequest,
    profile: ModelProfile,
    catalog: WorkflowCatalog,
) -> VariantSelection:
    """
    Choose and materialize the working graph for a request.

    The catalog entry is only read; the returned graph is a private clone.

    Raises:
        ConfigurationError: no template for the model/mode/variant.
        ValidationError: reference-chain synthesis failed.
    """
    count = request.image_count
    trace: List[Dict[str, Any]] = []

    if count > 0:
        if profile.reference_strategy == ReferenceStrategy.STITCH and count > 1:
            template = catalog.require(profile.model_id, Mode.IMAGE_TO_IMAGE, "stitch")
            kind = VariantKind.STITCHED
            graph = template.clone()
            trace.append({"step": "stitch", "reason": f"{count} images on a stitch model"})
        elif profile.reference_strategy == ReferenceStrategy.CHAIN and count > 1:
            if profile.reference_chain is None:
                raise ConfigurationError(
                    f"Model '{profile.model_id}' uses reference chaining but declares no chain layout",
                    {"model_id": profile.model_id},
                )
            template = catalog.require(profile.model_id, Mode.IMAGE_TO_IMAGE)
            kind = VariantKind.REFERENCE_CHAIN
            graph = extend_reference_chain(template.clone(), profile.reference_chain, count)
            trace.append({"step": "reference_chain", "reason": f"synthesized {count - 1} extra reference pair(s)"})
        else:
            template = catalog.require(profile.model_id, Mode.IMAGE_TO_IMAGE)
            kind = VariantKind.IMAGE_TO_IMAGE
            graph = template.clone()
            trace.append({"step": "image_to_image", "reason": f"{count} reference image(s)"})
    else:
        template = catalog.require(profile.model_id, Mode.TEXT_TO_IMAGE)
        kind = VariantKind.TEXT_TO_IMAGE
        graph = template.clone()
        trace.append({"step": "text_to_image", "reason": "no reference images"})

    log_structured(
        "info",
        "variant_selected",
        model_id=profile.model_id,
        template=template.name,
        variant=kind.value,
        image_count=count,
        node_count=len(graph),
    )
    return VariantSelection(graph=graph, template=template.name, kind=kind, image_count=count, explain_trace=trace)
