"""
Model Registry - Single Source of Truth for Model Profiles

Every dispatchable model is described once here: which modes it serves,
how many reference images it takes, which environment variable holds its
backend URL and how extra reference images are wired into its graph.

Usage:
    from .model_registry import get_profile, list_available_models, MODEL_PROFILES
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


class OutputKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class ReferenceStrategy(str, Enum):
    """How a model consumes more than one reference image."""

    SINGLE = "single"  # one image, plain image-to-image template
    STITCH = "stitch"  # dedicated template concatenates two images side by side
    CHAIN = "chain"  # base template extended per extra image (load + preprocess pair)


@dataclass(frozen=True)
class ReferenceChain:
    """
    Node layout of the N-reference edit family.

    The base template holds one ``load_node -> preprocess_node`` pair feeding
    ``image1`` of every encoder. Extra image k (k = 2, 3, ...) gets the pair
    ``extra_node_ids[k - 2]`` wired into ``image{k}``.
    """

    load_node: str
    load_class: str
    preprocess_node: str
    preprocess_class: str
    encoder_nodes: Tuple[str, ...]
    encoder_class: str
    extra_node_ids: Tuple[Tuple[str, str], ...]

    @property
    def max_images(self) -> int:
        return 1 + len(self.extra_node_ids)


@dataclass(frozen=True)
class ModelProfile:
    """Static configuration for one model."""

    model_id: str
    display_name: str
    base_url_env_var: str
    supports_t2i: bool = False
    supports_i2i: bool = False
    max_reference_images: int = 0
    output: OutputKind = OutputKind.IMAGE
    reference_strategy: ReferenceStrategy = ReferenceStrategy.SINGLE
    reference_chain: Optional[ReferenceChain] = None
    supports_negative_prompt: bool = False
    recommended: bool = False
    tags: Tuple[str, ...] = ()
    # Bound from the adapter registry when the dispatcher is built.
    injector: Optional[Callable[..., None]] = field(default=None, compare=False, repr=False)

    @property
    def modes(self) -> List[str]:
        modes = []
        if self.supports_t2i:
            modes.append("text-to-image")
        if self.supports_i2i:
            modes.append("image-to-image")
        return modes

    def accepts_image_count(self, count: int) -> bool:
        """Whether a request with ``count`` reference images fits this model."""
        if count > 0:
            return self.supports_i2i and count <= self.max_reference_images
        return self.supports_t2i

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_id": self.model_id,
            "display_name": self.display_name,
            "modes": self.modes,
            "max_reference_images": self.max_reference_images,
            "output": self.output.value,
            "reference_strategy": self.reference_strategy.value,
            "supports_negative_prompt": self.supports_negative_prompt,
            "base_url_env_var": self.base_url_env_var,
            "recommended": self.recommended,
            "tags": list(self.tags),
        }


QWEN_EDIT_CHAIN = ReferenceChain(
    load_node="78",
    load_class="LoadImage",
    preprocess_node="93",
    preprocess_class="ImageScaleToTotalPixels",
    encoder_nodes=("110", "111"),
    encoder_class="TextEncodeQwenImageEditPlus",
    extra_node_ids=(("79", "95"), ("80", "96")),
)


# =============================================================================
# Profiles
# =============================================================================

_PROFILES = [
    ModelProfile(
        model_id="Wai-SDXL-V150",
        display_name="WAI Illustrious SDXL v15",
        base_url_env_var="Wai_SDXL_V150_URL",
        supports_t2i=True,
        supports_negative_prompt=True,
        recommended=True,
        tags=("anime",),
    ),
    ModelProfile(
        model_id="Qwen-Image-Edit",
        display_name="Qwen Image Edit",
        base_url_env_var="Qwen_Image_Edit_URL",
        supports_i2i=True,
        max_reference_images=3,
        reference_strategy=ReferenceStrategy.CHAIN,
        reference_chain=QWEN_EDIT_CHAIN,
        supports_negative_prompt=True,
        recommended=True,
        tags=("fastGeneration", "multiImage"),
    ),
    ModelProfile(
        model_id="Flux-Krea",
        display_name="FLUX.1 Krea",
        base_url_env_var="Flux_Krea_URL",
        supports_t2i=True,
        tags=("realistic",),
    ),
    ModelProfile(
        model_id="Flux-Kontext",
        display_name="FLUX.1 Kontext",
        base_url_env_var="Kontext_fp8_URL",
        supports_i2i=True,
        max_reference_images=2,
        reference_strategy=ReferenceStrategy.STITCH,
        recommended=True,
        tags=("edit", "multiImage"),
    ),
    ModelProfile(
        model_id="Flux-Dev",
        display_name="FLUX.1 dev",
        base_url_env_var="Flux_Dev_URL",
        supports_t2i=True,
        supports_i2i=True,
        max_reference_images=1,
    ),
    ModelProfile(
        model_id="Stable-Diffusion-3.5",
        display_name="Stable Diffusion 3.5",
        base_url_env_var="Stable_Diffusion_3_5_URL",
        supports_t2i=True,
    ),
    ModelProfile(
        model_id="HiDream-full-fp8",
        display_name="HiDream I1 Full",
        base_url_env_var="HiDream_Fp8_URL",
        supports_t2i=True,
    ),
    ModelProfile(
        model_id="Qwen-Image",
        display_name="Qwen Image",
        base_url_env_var="Qwen_Image_URL",
        supports_t2i=True,
        supports_negative_prompt=True,
        tags=("textRendering",),
    ),
    ModelProfile(
        model_id="Z-Image-Turbo",
        display_name="Z-Image Turbo",
        base_url_env_var="Z_Image_Turbo_URL",
        supports_t2i=True,
        supports_negative_prompt=True,
        tags=("fastGeneration",),
    ),
    ModelProfile(
        model_id="Flux-2",
        display_name="FLUX.2 dev",
        base_url_env_var="Flux_2_URL",
        supports_t2i=True,
    ),
    ModelProfile(
        model_id="Wan2.2-I2V-Lightning",
        display_name="Wan 2.2 I2V Lightning",
        base_url_env_var="WAN_I2V_URL",
        supports_i2i=True,
        max_reference_images=1,
        output=OutputKind.VIDEO,
        supports_negative_prompt=True,
        recommended=True,
        tags=("fastGeneration", "i2v"),
    ),
    ModelProfile(
        model_id="SUPIR-Upscale",
        display_name="SUPIR Upscale",
        base_url_env_var="Supir_Repair_URL",
        supports_i2i=True,
        max_reference_images=1,
        supports_negative_prompt=True,
        tags=("upscale",),
    ),
    # Same backend as SUPIR-Upscale, separate graph that keeps the input size.
    ModelProfile(
        model_id="SUPIR-Repair",
        display_name="SUPIR Repair",
        base_url_env_var="Supir_Repair_URL",
        supports_i2i=True,
        max_reference_images=1,
        supports_negative_prompt=True,
        tags=("repair",),
    ),
]

MODEL_PROFILES: Dict[str, ModelProfile] = {p.model_id: p for p in _PROFILES}


# =============================================================================
# Lookup Functions
# =============================================================================


def get_profile(model_id: str) -> Optional[ModelProfile]:
    return MODEL_PROFILES.get(model_id)


def list_profiles() -> List[ModelProfile]:
    return list(MODEL_PROFILES.values())


def is_model_configured(profile: ModelProfile, env: Optional[Mapping[str, str]] = None) -> bool:
    """True when the model's base URL variable is set to a non-blank value."""
    env = os.environ if env is None else env
    return bool((env.get(profile.base_url_env_var) or "").strip())


def list_available_models(
    reference_image_count: int = 0,
    env: Optional[Mapping[str, str]] = None,
    profiles: Optional[Mapping[str, ModelProfile]] = None,
) -> List[Dict[str, Any]]:
    """
    List models with their availability for a given number of reference images.

    A model is available when its backend URL is configured and it accepts
    the image count. Available models sort first, then recommended ones;
    otherwise registry order is kept.

    Returns:
        Profile dicts with extra ``configured`` and ``available`` keys.
    """
    profiles = MODEL_PROFILES if profiles is None else profiles
    models = []
    for profile in profiles.values():
        configured = is_model_configured(profile, env)
        entry = profile.to_dict()
        entry["configured"] = configured
        entry["available"] = configured and profile.accepts_image_count(reference_image_count)
        models.append(entry)

    models.sort(key=lambda m: (not m["available"], not m["recommended"]))
    return models
