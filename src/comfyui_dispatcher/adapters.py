"""
Parameter Adapters - One Injector per Model

Every template was authored independently, so the same semantic parameter
lives at a different node id (and sometimes a different field name) in each
one. Each adapter declares the nodes it touches with their expected class,
checks all of them, and only then writes.

Adapters never write a seed the caller did not supply and never write a
negative prompt to a template that has no negative node.
"""

import math
from typing import Callable, Dict, Sequence

from .errors import ValidationError
from .graph import Graph
from .model_registry import QWEN_EDIT_CHAIN
from .types import GenerationRequest

Injector = Callable[[Graph, GenerationRequest], None]

ADAPTERS: Dict[str, Injector] = {}

# Qwen-Image-Edit runs with the 4-step Lightning LoRA baked into its template.
QWEN_EDIT_STEPS = 4


def register_adapter(*model_ids: str):
    """Register the decorated function as the injector for ``model_ids``."""

    def decorator(func: Injector) -> Injector:
        for model_id in model_ids:
            if model_id in ADAPTERS:
                raise ValueError(f"Adapter for '{model_id}' already registered")
            ADAPTERS[model_id] = func
        return func

    return decorator


def get_adapter(model_id: str) -> Injector | None:
    return ADAPTERS.get(model_id)


# =============================================================================
# Helpers
# =============================================================================


def require_nodes(graph: Graph, expected: Dict[str, str]) -> None:
    """
    Verify each node id exists with the expected class_type.

    Raises:
        ValidationError: naming the first missing or mismatched node.
    """
    for node_id, class_type in expected.items():
        node = graph.get_node(node_id)
        if node is None:
            raise ValidationError(
                f"Node '{node_id}' ({class_type}) is missing from the template",
                {"node_id": node_id, "expected_class": class_type},
            )
        if node.class_type != class_type:
            raise ValidationError(
                f"Node '{node_id}' is {node.class_type}, expected {class_type}",
                {"node_id": node_id, "expected_class": class_type, "actual_class": node.class_type},
            )


def _set_size(graph: Graph, request: GenerationRequest, *node_ids: str,
              width: str = "width", height: str = "height") -> None:
    for node_id in node_ids:
        graph.set_input(node_id, width, request.width)
        graph.set_input(node_id, height, request.height)


def _set_seed(graph: Graph, request: GenerationRequest, *node_ids: str, field: str = "seed") -> None:
    if request.seed is None:
        return
    for node_id in node_ids:
        graph.set_input(node_id, field, request.seed)


def _set_negative(graph: Graph, request: GenerationRequest, node_id: str, field: str = "text") -> None:
    if request.negative_prompt:
        graph.set_input(node_id, field, request.negative_prompt)


def image_payload(image: str) -> str:
    """Strip a `data:<mime>;base64,` prefix; LoadImage wants bare base64."""
    if image.startswith("data:"):
        _, _, payload = image.partition(",")
        return payload
    return image


def _set_images(graph: Graph, request: GenerationRequest, load_nodes: Sequence[str]) -> None:
    for node_id, image in zip(load_nodes, request.reference_images):
        graph.set_input(node_id, "image", image_payload(image))


# =============================================================================
# Text-to-image
# =============================================================================


@register_adapter("HiDream-full-fp8", "Stable-Diffusion-3.5")
def inject_sd3_layout(graph: Graph, request: GenerationRequest) -> None:
    """HiDream and SD3.5 share one layout: latent 53, prompt 16, sampler 3."""
    require_nodes(graph, {"53": "EmptySD3LatentImage", "16": "CLIPTextEncode", "3": "KSampler"})
    _set_size(graph, request, "53")
    graph.set_input("16", "text", request.prompt)
    graph.set_input("3", "steps", request.steps)
    _set_seed(graph, request, "3")


@register_adapter("Flux-Krea")
def inject_flux_krea(graph: Graph, request: GenerationRequest) -> None:
    require_nodes(graph, {"27": "EmptySD3LatentImage", "45": "CLIPTextEncode", "31": "KSampler"})
    _set_size(graph, request, "27")
    graph.set_input("45", "text", request.prompt)
    graph.set_input("31", "steps", request.steps)
    _set_seed(graph, request, "31")


@register_adapter("Qwen-Image")
def inject_qwen_image(graph: Graph, request: GenerationRequest) -> None:
    require_nodes(graph, {
        "58": "EmptySD3LatentImage",
        "6": "CLIPTextEncode",
        "7": "CLIPTextEncode",
        "3": "KSampler",
    })
    _set_size(graph, request, "58")
    graph.set_input("6", "text", request.prompt)
    _set_negative(graph, request, "7")
    graph.set_input("3", "steps", request.steps)
    _set_seed(graph, request, "3")


@register_adapter("Wai-SDXL-V150")
def inject_wai_sdxl(graph: Graph, request: GenerationRequest) -> None:
    require_nodes(graph, {
        "5": "EmptyLatentImage",
        "6": "CLIPTextEncode",
        "7": "CLIPTextEncode",
        "30": "KSampler",
    })
    _set_size(graph, request, "5")
    graph.set_input("6", "text", request.prompt)
    _set_negative(graph, request, "7")
    graph.set_input("30", "steps", request.steps)
    _set_seed(graph, request, "30")


@register_adapter("Z-Image-Turbo")
def inject_z_image_turbo(graph: Graph, request: GenerationRequest) -> None:
    require_nodes(graph, {
        "13": "EmptySD3LatentImage",
        "6": "CLIPTextEncode",
        "7": "CLIPTextEncode",
        "3": "KSampler",
    })
    _set_size(graph, request, "13")
    graph.set_input("6", "text", request.prompt)
    _set_negative(graph, request, "7")
    graph.set_input("3", "steps", request.steps)
    _set_seed(graph, request, "3")


@register_adapter("Flux-2")
def inject_flux2(graph: Graph, request: GenerationRequest) -> None:
    """Size goes to both the latent and the scheduler; they must agree."""
    require_nodes(graph, {
        "47": "EmptyFlux2LatentImage",
        "48": "Flux2Scheduler",
        "6": "CLIPTextEncode",
        "25": "RandomNoise",
    })
    _set_size(graph, request, "47", "48")
    graph.set_input("6", "text", request.prompt)
    graph.set_input("48", "steps", request.steps)
    _set_seed(graph, request, "25", field="noise_seed")


# =============================================================================
# Text-to-image and image-to-image
# =============================================================================


@register_adapter("Flux-Dev")
def inject_flux_dev(graph: Graph, request: GenerationRequest) -> None:
    """
    FLUX.1 dev, both modes.

    ModelSamplingFlux (46) needs the same size as the latent (44) or the
    resized input image (52). Image-to-image honours ``denoise``.
    Steps go to the scheduler (17) in both modes, so an image-to-image
    request no longer runs at the template's fixed step count.
    """
    shared = {
        "46": "ModelSamplingFlux",
        "43": "CLIPTextEncode",
        "17": "BasicScheduler",
        "45": "RandomNoise",
    }
    if request.reference_images:
        require_nodes(graph, {"50": "LoadImage", "52": "ImageScale", **shared})
        _set_images(graph, request, ["50"])
        _set_size(graph, request, "52", "46")
        if request.denoise is not None:
            graph.set_input("17", "denoise", request.denoise)
    else:
        require_nodes(graph, {"44": "EmptySD3LatentImage", **shared})
        _set_size(graph, request, "44", "46")

    graph.set_input("43", "text", request.prompt)
    graph.set_input("17", "steps", request.steps)
    _set_seed(graph, request, "45", field="noise_seed")


# =============================================================================
# Image-to-image
# =============================================================================


@register_adapter("Flux-Kontext")
def inject_flux_kontext(graph: Graph, request: GenerationRequest) -> None:
    """
    FLUX.1 Kontext edit.

    One image: resize-and-pad node 189 sets the output size. Two images: the
    stitched template, with the latent size on 188. Denoise stays at the
    template value in both cases.
    """
    if request.image_count > 1:
        require_nodes(graph, {
            "192": "LoadImage",
            "193": "LoadImage",
            "188": "EmptySD3LatentImage",
            "6": "CLIPTextEncode",
            "31": "KSampler",
        })
        _set_images(graph, request, ["192", "193"])
        _set_size(graph, request, "188")
    else:
        require_nodes(graph, {
            "142": "LoadImage",
            "189": "ResizeAndPadImage",
            "6": "CLIPTextEncode",
            "31": "KSampler",
        })
        _set_images(graph, request, ["142"])
        _set_size(graph, request, "189", width="target_width", height="target_height")

    graph.set_input("6", "text", request.prompt)
    graph.set_input("31", "steps", request.steps)
    _set_seed(graph, request, "31")


@register_adapter("Qwen-Image-Edit")
def inject_qwen_image_edit(graph: Graph, request: GenerationRequest) -> None:
    """
    Qwen-Image-Edit with one to three references.

    Prompt text lives in the ``prompt`` field of the two edit encoders:
    111 is positive, 110 negative. Steps are pinned to QWEN_EDIT_STEPS.
    """
    chain = QWEN_EDIT_CHAIN
    load_nodes = [chain.load_node] + [load_id for load_id, _ in chain.extra_node_ids]
    load_nodes = load_nodes[: max(request.image_count, 1)]

    expected = {node_id: chain.load_class for node_id in load_nodes}
    expected.update({
        "112": "EmptySD3LatentImage",
        "111": chain.encoder_class,
        "110": chain.encoder_class,
        "3": "KSampler",
    })
    require_nodes(graph, expected)

    _set_images(graph, request, load_nodes)
    _set_size(graph, request, "112")
    graph.set_input("111", "prompt", request.prompt)
    _set_negative(graph, request, "110", field="prompt")
    graph.set_input("3", "steps", QWEN_EDIT_STEPS)
    _set_seed(graph, request, "3")


@register_adapter("Wan2.2-I2V-Lightning")
def inject_wan22_i2v(graph: Graph, request: GenerationRequest) -> None:
    """
    Wan 2.2 image-to-video: two KSamplerAdvanced stages.

    The high-noise stage (57) runs steps [0, ceil(steps/2)), the low-noise
    stage (58) the rest. Both share the seed.
    """
    require_nodes(graph, {
        "71": "LoadImage",
        "73": "WanImageToVideo",
        "6": "CLIPTextEncode",
        "7": "CLIPTextEncode",
        "57": "KSamplerAdvanced",
        "58": "KSamplerAdvanced",
        "60": "CreateVideo",
    })
    _set_images(graph, request, ["71"])
    _set_size(graph, request, "73")
    if request.length is not None:
        graph.set_input("73", "length", request.length)
    if request.fps is not None:
        graph.set_input("60", "fps", request.fps)

    graph.set_input("6", "text", request.prompt)
    _set_negative(graph, request, "7")

    split = math.ceil(request.steps / 2)
    graph.set_input("57", "steps", request.steps)
    graph.set_input("57", "end_at_step", split)
    graph.set_input("58", "steps", request.steps)
    graph.set_input("58", "start_at_step", split)
    graph.set_input("58", "end_at_step", request.steps)
    _set_seed(graph, request, "57", "58", field="noise_seed")


@register_adapter("SUPIR-Upscale")
def inject_supir_upscale(graph: Graph, request: GenerationRequest) -> None:
    """SUPIR restoration. Output size follows ``scale_by``; width/height are unused."""
    require_nodes(graph, {"1": "SUPIR_Upscale", "2": "LoadImage"})
    _set_images(graph, request, ["2"])
    graph.set_input("1", "a_prompt", request.prompt)
    _set_negative(graph, request, "1", field="n_prompt")
    graph.set_input("1", "steps", request.steps)
    if request.scale_by is not None:
        graph.set_input("1", "scale_by", request.scale_by)
    _set_seed(graph, request, "1")


@register_adapter("SUPIR-Repair")
def inject_supir_repair(graph: Graph, request: GenerationRequest) -> None:
    """
    SUPIR v2 node chain at the input resolution; width/height are unused.

    Prompts go to the conditioner (5), steps and seed to the sampler (6).
    An empty prompt keeps the template's quality prompt.
    """
    require_nodes(graph, {
        "11": "LoadImage",
        "5": "SUPIR_conditioner",
        "6": "SUPIR_sample",
    })
    _set_images(graph, request, ["11"])
    graph.set_input("11", "upload", "image")
    if request.prompt:
        graph.set_input("5", "positive_prompt", request.prompt)
    _set_negative(graph, request, "5", field="negative_prompt")
    graph.set_input("6", "steps", request.steps)
    _set_seed(graph, request, "6")
