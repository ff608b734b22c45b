"""Model alias table: Anthropic-style model ids -> Sider model ids."""

from __future__ import annotations

from dataclasses import dataclass

from sidergate.util.logger import logger


DEFAULT_SIDER_MODEL = "claude-4.5-sonnet"
_MODEL_CREATED_TS = 1677649963


@dataclass(frozen=True, slots=True)
class ModelInfo:
    id: str
    sider_model: str
    owned_by: str = "anthropic"
    created: int = _MODEL_CREATED_TS

    def to_dict(self) -> dict:
        return {"id": self.id, "object": "model", "created": self.created, "owned_by": self.owned_by}


SUPPORTED_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("claude-3.7-sonnet", "claude-3.7-sonnet"),
    ModelInfo("claude-3-7-sonnet", "claude-3.7-sonnet-think"),
    ModelInfo("claude-4-sonnet", "claude-4-sonnet"),
    ModelInfo("claude-4-sonnet-think", "claude-4-sonnet-think"),
    ModelInfo("claude-4.1-opus", "claude-4.1-opus"),
    ModelInfo("claude-4.1-opus-think", "claude-4.1-opus-think"),
    ModelInfo("claude-4.5-sonnet", "claude-4.5-sonnet"),
    ModelInfo("claude-4.5-sonnet-think", "claude-4.5-sonnet-think"),
    ModelInfo("claude-haiku-4.5", "claude-haiku-4.5"),
    ModelInfo("claude-haiku-4.5-think", "claude-haiku-4.5-think"),
    # 通用别名
    ModelInfo("claude-3-sonnet", "claude-3.7-sonnet-think"),
    ModelInfo("claude-sonnet", "claude-4.5-sonnet-think"),
)

MODEL_MAP: dict[str, str] = {model.id.lower(): model.sider_model for model in SUPPORTED_MODELS}


def get_model(model_id: str) -> ModelInfo | None:
    lowered = model_id.lower()
    for model in SUPPORTED_MODELS:
        if model.id.lower() == lowered:
            return model
    return None


def map_model_name(model: str) -> str:
    """Map a requested model id to the Sider model id."""

    mapped = MODEL_MAP.get(model.lower())
    if mapped:
        return mapped
    if "think" in model:
        return model
    logger.warning("unknown model requested=%s, using default=%s", model, DEFAULT_SIDER_MODEL)
    return DEFAULT_SIDER_MODEL
