"""
Workflow Dispatcher

Ties the pieces together for one request:

    select variant -> clone -> inject -> resolve URL -> submit -> classify

Every failure becomes a ``DispatchResult`` carrying a classified error;
nothing is retried and no call yields more than one artifact.
"""

import json
from dataclasses import replace
from typing import Callable, Dict, List, Mapping, Optional

from .adapters import ADAPTERS, Injector
from .client import ComfyUIClient, RawResponse
from .errors import (
    ConfigurationError,
    DispatchError,
    EndpointNotFound,
    MalformedResponse,
    UpstreamError,
    UpstreamUnavailable,
    ValidationError,
)
from .graph import NodeNotFoundError, dangling_refs
from .mcp_utils import log_structured
from .model_registry import MODEL_PROFILES, ModelProfile, OutputKind, ReferenceStrategy
from .router import resolve_base_url
from .schemas import BackendResponse
from .templates import Mode, WorkflowCatalog, get_catalog
from .types import DispatchResult, GenerationRequest
from .variants import select_variant

IMAGE_PREFIX = "data:image/png;base64,"
VIDEO_PREFIX = "data:video/mp4;base64,"

# Proxy in front of the backends answers with these texts, sometimes with 200.
UPSTREAM_MARKERS = ("no healthy upstream", "upstream")

BODY_DETAIL_LIMIT = 2000


def interpret_response(response: RawResponse, output: OutputKind = OutputKind.IMAGE) -> str:
    """
    Turn a raw backend answer into a data URL.

    Returns:
        ``data:image/png;base64,...``. Video models return ``video`` as a
        ``data:video/...`` URL when present; a video backend that only sends
        frames yields the first frame as a PNG data URL.

    Raises:
        EndpointNotFound: HTTP 404.
        UpstreamUnavailable: HTTP 503, or an upstream marker in a 2xx body.
        UpstreamError: any other non-2xx status.
        MalformedResponse: 2xx body without a usable artifact.
    """
    body = response.body
    details = {"status": response.status, "body": body[:BODY_DETAIL_LIMIT]}

    if response.status == 404:
        raise EndpointNotFound("Backend endpoint not found (HTTP 404), check the base URL", details)
    if response.status == 503:
        raise UpstreamUnavailable("Backend unavailable (HTTP 503)", details)
    if not response.is_success:
        raise UpstreamError(f"Backend returned HTTP {response.status}: {body[:200]}", details)

    if any(marker in body for marker in UPSTREAM_MARKERS):
        raise UpstreamUnavailable("Backend proxy reports no healthy upstream", details)

    try:
        payload: BackendResponse = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"Backend response is not valid JSON: {e.msg}", details) from e
    if not isinstance(payload, dict):
        raise MalformedResponse("Backend response is not a JSON object", details)

    if output == OutputKind.VIDEO:
        video = payload.get("video")
        if isinstance(video, str) and video:
            return video if video.startswith("data:video") else VIDEO_PREFIX + video

    images = payload.get("images")
    if not isinstance(images, list) or not images:
        raise MalformedResponse("Backend response has no images", details)
    first = images[0]
    if not isinstance(first, str) or not first:
        raise MalformedResponse("Backend response images[0] is not a base64 string", details)

    return IMAGE_PREFIX + first


# =============================================================================
# Registry Verification
# =============================================================================


def _dry_run_request(profile: ModelProfile, image_count: int) -> GenerationRequest:
    return GenerationRequest(
        prompt="registry check",
        model_id=profile.model_id,
        width=512,
        height=512,
        steps=4,
        reference_images=["dry-run"] * image_count,
    )


def verify_registry(catalog: WorkflowCatalog, profiles: Mapping[str, ModelProfile]) -> List[str]:
    """
    Check every profile is fully wired.

    For each profile: an injector is bound, each supported mode has a
    template, the stitch/chain variants it relies on exist and synthesize,
    and the injector runs cleanly against every variant it can receive.

    Returns:
        Problem descriptions, empty when the registry is complete.
    """
    problems = []
    for profile in profiles.values():
        mid = profile.model_id
        found = len(problems)
        if profile.injector is None:
            problems.append(f"{mid}: no adapter registered")
            continue

        image_counts = []
        if profile.supports_t2i:
            image_counts.append(0)
        if profile.supports_i2i:
            image_counts.append(1)
            if profile.reference_strategy != ReferenceStrategy.SINGLE:
                image_counts.extend(range(2, profile.max_reference_images + 1))
        if not image_counts:
            problems.append(f"{mid}: supports no mode")
            continue

        for mode in profile.modes:
            if catalog.lookup(mid, mode) is None:
                problems.append(f"{mid}: no {mode} template")
        if profile.reference_strategy == ReferenceStrategy.STITCH and catalog.lookup(mid, Mode.IMAGE_TO_IMAGE, "stitch") is None:
            problems.append(f"{mid}: no stitch template")
        if profile.reference_strategy == ReferenceStrategy.CHAIN:
            if profile.reference_chain is None:
                problems.append(f"{mid}: reference chain layout missing")
                continue
            if profile.max_reference_images > profile.reference_chain.max_images:
                problems.append(
                    f"{mid}: max_reference_images {profile.max_reference_images} exceeds "
                    f"chain capacity {profile.reference_chain.max_images}"
                )
                continue
        if len(problems) > found:
            continue

        for count in image_counts:
            request = _dry_run_request(profile, count)
            try:
                selection = select_variant(request, profile, catalog)
                profile.injector(selection.graph, request)
            except (DispatchError, NodeNotFoundError) as e:
                problems.append(f"{mid} ({count} image(s)): {e}")
    return problems


# =============================================================================
# Dispatcher
# =============================================================================


ClientFactory = Callable[..., ComfyUIClient]


def bind_profiles(
    profiles: Optional[Mapping[str, ModelProfile]] = None,
    adapters: Optional[Mapping[str, Injector]] = None,
) -> Dict[str, ModelProfile]:
    """Copy profiles with their injector taken from the adapter registry."""
    adapters = ADAPTERS if adapters is None else adapters
    profiles = MODEL_PROFILES if profiles is None else profiles
    return {
        mid: replace(profile, injector=profile.injector or adapters.get(mid))
        for mid, profile in profiles.items()
    }


class Dispatcher:
    """
    Stateless per-call dispatcher over a catalog and a set of profiles.

    Construction binds adapters to profiles and verifies the registry, so a
    model advertised without a template or adapter fails at startup.
    """

    def __init__(
        self,
        catalog: Optional[WorkflowCatalog] = None,
        profiles: Optional[Mapping[str, ModelProfile]] = None,
        adapters: Optional[Mapping[str, Injector]] = None,
        env: Optional[Mapping[str, str]] = None,
        client_factory: ClientFactory = ComfyUIClient,
        timeout: Optional[float] = None,
    ):
        self.catalog = catalog if catalog is not None else get_catalog()
        self.profiles = bind_profiles(profiles, adapters)
        self.env = env
        self.client_factory = client_factory
        self.timeout = timeout

        problems = verify_registry(self.catalog, self.profiles)
        if problems:
            raise ConfigurationError(
                f"Model registry is incomplete: {problems[0]}",
                {"problems": problems},
            )

    def dispatch(self, request: GenerationRequest) -> DispatchResult:
        """
        Run one request end to end.

        Returns:
            DispatchResult with exactly one artifact or one classified error.
        """
        warnings: List[str] = []
        template = ""
        profile = self.profiles.get(request.model_id)

        try:
            if profile is None:
                raise ConfigurationError(
                    f"no workflow for model '{request.model_id}'",
                    {"model_id": request.model_id, "known_models": sorted(self.profiles)},
                )

            selection = select_variant(request, profile, self.catalog)
            template = selection.template

            if request.negative_prompt and not profile.supports_negative_prompt:
                warnings.append(f"Model '{profile.model_id}' has no negative prompt node; negative prompt ignored")
                log_structured("warning", "negative_prompt_ignored", model_id=profile.model_id, template=template)

            try:
                profile.injector(selection.graph, request)
            except NodeNotFoundError as e:
                raise ValidationError(str(e), {"node_id": e.node_id, "template": template}) from e

            errors = dangling_refs(selection.graph)
            if errors:
                raise ValidationError(f"Workflow has dangling references: {errors[0]}", {"errors": errors})

            base_url = resolve_base_url(profile, self.env)
            client = self.client_factory(base_url, timeout=self.timeout)
            log_structured(
                "info",
                "dispatch_submitted",
                model_id=profile.model_id,
                template=template,
                url=client.submit_url,
                node_count=len(selection.graph),
                seed=request.seed,
            )
            response = client.submit(selection.graph.to_prompt())
            artifact = interpret_response(response, profile.output)

        except DispatchError as e:
            log_structured(
                "warning" if e.kind.is_backend_issue else "error",
                "dispatch_failed",
                model_id=request.model_id,
                template=template,
                code=e.code,
                error=e.error,
            )
            return DispatchResult.fail(e, model_id=request.model_id, template=template, warnings=warnings)

        log_structured(
            "info",
            "dispatch_completed",
            model_id=request.model_id,
            template=template,
            artifact_bytes=len(artifact),
        )
        return DispatchResult.ok(artifact, model_id=request.model_id, template=template, warnings=warnings)


_dispatcher: Optional[Dispatcher] = None


def get_dispatcher() -> Dispatcher:
    """Get or create the process-wide dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = Dispatcher()
    return _dispatcher


def dispatch(request: GenerationRequest) -> DispatchResult:
    return get_dispatcher().dispatch(request)
