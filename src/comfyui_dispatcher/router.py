"""Backend URL resolution from environment-style configuration."""

import os
from typing import Mapping, Optional

from .errors import ConfigurationError
from .model_registry import ModelProfile


def resolve_base_url(profile: ModelProfile, env: Optional[Mapping[str, str]] = None) -> str:
    """
    Read the model's base URL and strip trailing slashes.

    Args:
        profile: Model whose ``base_url_env_var`` is read.
        env: Key/value config source, ``os.environ`` by default.

    Raises:
        ConfigurationError: variable unset or blank.
    """
    env = os.environ if env is None else env
    raw = (env.get(profile.base_url_env_var) or "").strip()
    if not raw:
        raise ConfigurationError(
            f"Backend URL for model '{profile.model_id}' is not configured",
            {"model_id": profile.model_id, "env_var": profile.base_url_env_var},
        )
    return raw.rstrip("/")
