from __future__ import annotations

import pytest

from pystatestore.config import DEFAULT_HYDRATION_PREFIX, RenderMode, StoreConfig, _env_bool

_ENV_VARS = (
    "PYSTATESTORE_RENDER_MODE",
    "PYSTATESTORE_HYDRATION_PREFIX",
    "PYSTATESTORE_REFETCH_ON_FALLBACK",
    "PYSTATESTORE_REFRESH_INTERVAL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults() -> None:
    config = StoreConfig()
    assert config.render_mode is RenderMode.SSR_HYDRATE
    assert config.hydration_prefix == DEFAULT_HYDRATION_PREFIX
    assert config.refetch_on_fallback is True
    assert config.refresh_interval is None
    assert config.embeds_state and config.reads_state


@pytest.mark.parametrize("mode", [RenderMode.SSR, RenderMode.CSR])
def test_only_hydrate_mode_transfers_state(mode: RenderMode) -> None:
    config = StoreConfig(render_mode=mode)
    assert not config.embeds_state
    assert not config.reads_state


def test_validation() -> None:
    with pytest.raises(ValueError):
        StoreConfig(hydration_prefix="")
    with pytest.raises(ValueError):
        StoreConfig(refresh_interval=0)


def test_from_env(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PYSTATESTORE_RENDER_MODE", " CSR ")
    clean_env.setenv("PYSTATESTORE_HYDRATION_PREFIX", "app_state_")
    clean_env.setenv("PYSTATESTORE_REFETCH_ON_FALLBACK", "off")
    clean_env.setenv("PYSTATESTORE_REFRESH_INTERVAL", "2.5")

    config = StoreConfig.from_env()

    assert config.render_mode is RenderMode.CSR
    assert config.hydration_prefix == "app_state_"
    assert config.refetch_on_fallback is False
    assert config.refresh_interval == 2.5


def test_from_env_without_variables(clean_env: pytest.MonkeyPatch) -> None:
    assert StoreConfig.from_env() == StoreConfig()


def test_overrides_win(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PYSTATESTORE_RENDER_MODE", "csr")
    clean_env.setenv("PYSTATESTORE_REFRESH_INTERVAL", "10")

    config = StoreConfig.from_env(render_mode="ssr", refresh_interval=1.0)

    assert config.render_mode is RenderMode.SSR
    assert config.refresh_interval == 1.0


def test_invalid_render_mode(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("PYSTATESTORE_RENDER_MODE", "static")
    with pytest.raises(ValueError):
        StoreConfig.from_env()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, True), ("1", True), ("Yes", True), ("0", False), ("no", False), ("maybe", True)],
)
def test_env_bool(raw: str | None, expected: bool) -> None:
    assert _env_bool(raw, True) is expected
