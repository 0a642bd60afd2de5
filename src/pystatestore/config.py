"""Runtime configuration for pystatestore."""

from __future__ import annotations

import dataclasses
import os
from enum import StrEnum
from typing import Any

#: Prefix of the id attribute of embedded hydration blocks.
DEFAULT_HYDRATION_PREFIX = "__PYSTATESTORE_STATE__"


class RenderMode(StrEnum):
    """Deployment mode, selected externally.

    ``SSR`` renders on the server without state transfer, ``SSR_HYDRATE``
    embeds snapshots for the client, ``CSR`` renders on the client only.
    """

    SSR = "ssr"
    SSR_HYDRATE = "ssr_hydrate"
    CSR = "csr"


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class StoreConfig:
    """Store runtime configuration.

    Parameters
    ----------
    render_mode : RenderMode
        Which halves of the hydration protocol are active.
    hydration_prefix : str
        Prefix of embedded block ids; the block for key ``k`` has id
        ``hydration_prefix + k``.
    refetch_on_fallback : bool
        Flag stores built by a hydration fallback with ``needs_refetch``.
        Disable only for stores whose default snapshot is authoritative.
    refresh_interval : float or None
        Default period in seconds for live refresh. ``None`` disables
        live refresh unless an interval is passed explicitly.
    """

    render_mode: RenderMode = RenderMode.SSR_HYDRATE
    hydration_prefix: str = DEFAULT_HYDRATION_PREFIX
    refetch_on_fallback: bool = True
    refresh_interval: float | None = None

    def __post_init__(self) -> None:
        if not self.hydration_prefix:
            raise ValueError("hydration_prefix must be non-empty")
        if self.refresh_interval is not None and self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")

    @property
    def embeds_state(self) -> bool:
        """Whether the server half serializes snapshots into the document."""
        return self.render_mode is RenderMode.SSR_HYDRATE

    @property
    def reads_state(self) -> bool:
        """Whether the client half looks for embedded snapshots."""
        return self.render_mode is RenderMode.SSR_HYDRATE

    @classmethod
    def from_env(cls, **overrides: Any) -> StoreConfig:
        """Create configuration from ``PYSTATESTORE_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        mode_env = env.get("PYSTATESTORE_RENDER_MODE")
        if mode_env is not None and "render_mode" not in overrides:
            config_kwargs["render_mode"] = RenderMode(mode_env.strip().lower())

        prefix_env = env.get("PYSTATESTORE_HYDRATION_PREFIX")
        if prefix_env is not None:
            config_kwargs["hydration_prefix"] = prefix_env

        if "refetch_on_fallback" not in overrides:
            config_kwargs["refetch_on_fallback"] = _env_bool(env.get("PYSTATESTORE_REFETCH_ON_FALLBACK"), True)

        interval_env = env.get("PYSTATESTORE_REFRESH_INTERVAL")
        if interval_env is not None and "refresh_interval" not in overrides:
            config_kwargs["refresh_interval"] = float(interval_env)

        mode_override = overrides.get("render_mode")
        if isinstance(mode_override, str):
            overrides["render_mode"] = RenderMode(mode_override)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
