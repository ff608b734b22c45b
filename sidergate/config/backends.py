"""Backend enablement and routing policy, derived once from settings."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

from sidergate.config.settings import Settings, settings as default_settings
from sidergate.core.errors import ConfigurationError
from sidergate.util.logger import logger
from sidergate.util.masking import mask_token


Backend = Literal["sider", "anthropic"]
BACKENDS: tuple[Backend, ...] = ("sider", "anthropic")

_DISPLAY_NAMES = {"sider": "Sider AI", "anthropic": "Anthropic API"}


@dataclass(frozen=True, slots=True)
class SiderBackendConfig:
    enabled: bool
    api_url: str
    conversation_url: str
    auth_token: str
    timeout_seconds: float = 30.0
    history_timeout_seconds: float = 10.0
    history_limit: int = 50


@dataclass(frozen=True, slots=True)
class AnthropicBackendConfig:
    enabled: bool
    base_url: str
    api_key: str
    version: str = "2023-06-01"
    timeout_seconds: float = 60.0
    dynamic_model_mapping: bool = True


@dataclass(frozen=True, slots=True)
class RoutingConfig:
    default_backend: Backend = "sider"
    auto_fallback: bool = True
    prefer_sider_for_simple_chat: bool = True
    debug_mode: bool = False


@dataclass(frozen=True, slots=True)
class BackendConfig:
    sider: SiderBackendConfig
    anthropic: AnthropicBackendConfig
    routing: RoutingConfig

    def is_enabled(self, backend: Backend) -> bool:
        return self.sider.enabled if backend == "sider" else self.anthropic.enabled

    def enabled_backends(self) -> list[Backend]:
        return [backend for backend in BACKENDS if self.is_enabled(backend)]


def backend_display_name(backend: str) -> str:
    return _DISPLAY_NAMES.get(backend, backend)


def other_backend(backend: Backend) -> Backend:
    return "anthropic" if backend == "sider" else "sider"


def _normalize_backend(raw: str) -> Backend:
    candidate = str(raw or "").strip().lower()
    if candidate == "anthropic":
        return "anthropic"
    if candidate != "sider":
        logger.warning("unknown default backend=%s, using sider", raw)
    return "sider"


def validate_backend_config(config: BackendConfig) -> BackendConfig:
    """Reject configs with no backend and repoint a disabled default backend."""

    if not config.sider.enabled and not config.anthropic.enabled:
        logger.error("no backend available: configure SIDERGATE_SIDER_AUTH_TOKEN or SIDERGATE_ANTHROPIC_API_KEY")
        raise ConfigurationError("Invalid backend configuration: no backend available")

    default = config.routing.default_backend
    if not config.is_enabled(default):
        fallback = other_backend(default)
        logger.warning(
            "default backend %s is not configured, using %s",
            backend_display_name(default),
            backend_display_name(fallback),
        )
        config = replace(config, routing=replace(config.routing, default_backend=fallback))
    return config


def load_backend_config(source: Settings | None = None) -> BackendConfig:
    cfg = source or default_settings
    config = BackendConfig(
        sider=SiderBackendConfig(
            enabled=bool(cfg.sider_auth_token.strip()),
            api_url=cfg.sider_api_url,
            conversation_url=cfg.sider_conversation_url,
            auth_token=cfg.sider_auth_token.strip(),
            timeout_seconds=float(cfg.sider_timeout_seconds),
            history_timeout_seconds=float(cfg.sider_history_timeout_seconds),
            history_limit=max(1, int(cfg.sider_history_limit)),
        ),
        anthropic=AnthropicBackendConfig(
            enabled=bool(cfg.anthropic_api_key.strip()),
            base_url=cfg.anthropic_base_url.rstrip("/"),
            api_key=cfg.anthropic_api_key.strip(),
            version=cfg.anthropic_version,
            timeout_seconds=float(cfg.anthropic_timeout_seconds),
            dynamic_model_mapping=cfg.enable_dynamic_model_mapping,
        ),
        routing=RoutingConfig(
            default_backend=_normalize_backend(cfg.default_backend),
            auto_fallback=cfg.auto_fallback,
            prefer_sider_for_simple_chat=cfg.prefer_sider_for_simple_chat,
            debug_mode=cfg.debug_routing,
        ),
    )
    config = validate_backend_config(config)
    log_config_summary(config)
    return config


def log_config_summary(config: BackendConfig) -> None:
    logger.info(
        "backend config sider_enabled=%s sider_url=%s sider_token=%s",
        config.sider.enabled,
        config.sider.api_url if config.sider.enabled else "-",
        mask_token(config.sider.auth_token) if config.sider.enabled else "-",
    )
    logger.info(
        "backend config anthropic_enabled=%s base_url=%s api_key=%s",
        config.anthropic.enabled,
        config.anthropic.base_url if config.anthropic.enabled else "-",
        mask_token(config.anthropic.api_key) if config.anthropic.enabled else "-",
    )
    logger.info(
        "routing config default=%s auto_fallback=%s prefer_sider_for_chat=%s debug=%s",
        config.routing.default_backend,
        config.routing.auto_fallback,
        config.routing.prefer_sider_for_simple_chat,
        config.routing.debug_mode,
    )
