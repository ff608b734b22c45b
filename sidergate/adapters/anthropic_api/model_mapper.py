"""Best-match model name lookup against a third-party endpoint's model list."""

from __future__ import annotations

import asyncio
import re
import threading
from dataclasses import dataclass
from functools import cmp_to_key

from sidergate.adapters.anthropic_compat.upstream import _fetch_json
from sidergate.core.errors import UpstreamError
from sidergate.util.logger import logger


MODEL_LIST_ENDPOINTS = ("/v1/models", "/models")
MIN_SIMILARITY = 0.6
SCORE_TIE_EPSILON = 0.01

# 拉不到模型列表时使用的常见 Claude 模型 id
FALLBACK_MODELS: dict[str, tuple[str, ...]] = {
    "claude-4.5-sonnet": ("claude-sonnet-4-5-20250929", "claude-sonnet-4.5", "claude-4-5-sonnet"),
    "claude-3.5-sonnet": ("claude-3-5-sonnet-20241022", "claude-3-5-sonnet-latest"),
    "claude-3-opus": ("claude-3-opus-20240229",),
    "claude-3-haiku": ("claude-3-haiku-20240307",),
}

_VERSION_PATTERNS = (
    ("claude45", re.compile(r"claude[\s_-]*4[._-]?5", re.IGNORECASE)),
    ("claude37", re.compile(r"claude[\s_-]*3[._-]?7", re.IGNORECASE)),
    ("claude35", re.compile(r"claude[\s_-]*3[._-]?5", re.IGNORECASE)),
    ("claude3", re.compile(r"claude[\s_-]*3", re.IGNORECASE)),
    ("claude2", re.compile(r"claude[\s_-]*2", re.IGNORECASE)),
)
_TIERS = ("sonnet", "opus", "haiku")
_THINKING = re.compile(r"thinking?", re.IGNORECASE)
_DATE = re.compile(r"(\d{8})")
_SEPARATORS = re.compile(r"[-_.]")


def normalize_model_name(name: str) -> str:
    return _SEPARATORS.sub("", name.lower())


def extract_date(name: str) -> int:
    match = _DATE.search(name)
    return int(match.group(1)) if match else 0


def extract_features(name: str) -> list[str]:
    features: list[str] = []
    for label, pattern in _VERSION_PATTERNS:
        if pattern.search(name):
            features.append(label)
            break
    lowered = name.lower()
    features.extend(tier for tier in _TIERS if tier in lowered)
    if _THINKING.search(name):
        features.append("thinking")
    return features


def similarity(source: str, target: str) -> float:
    normalized_source = normalize_model_name(source)
    normalized_target = normalize_model_name(target)
    if normalized_source == normalized_target:
        return 1.0
    if normalized_source in normalized_target:
        return 0.9

    source_features = extract_features(source)
    if not source_features:
        return 0.0
    target_features = set(extract_features(target))
    feature_score = sum(1 for feature in source_features if feature in target_features) / len(source_features)

    longest = max(len(normalized_source), len(normalized_target))
    common = sum(1 for char in normalized_source if char in normalized_target)
    char_score = common / longest if longest else 0.0
    return feature_score * 0.7 + char_score * 0.3


@dataclass(slots=True)
class _Candidate:
    model: str
    score: float
    date: int


def _rank(a: _Candidate, b: _Candidate) -> int:
    # 分数相差不超过 0.01 视为相同，优先日期更新的
    if abs(a.score - b.score) > SCORE_TIE_EPSILON:
        return -1 if a.score > b.score else 1
    return b.date - a.date


class ModelMapper:
    def __init__(self, base_url: str, api_key: str, timeout_seconds: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._available: set[str] = set()
        self._cache: dict[str, str] = {}
        self._cache_lock = threading.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            logger.info("initializing model mapper base_url=%s", self.base_url)
            models = await self._fetch_available_models()
            if models:
                self._available.update(models)
                claude = [model for model in models if "claude" in model.lower()]
                logger.info("model mapper found models=%d claude=%s", len(models), claude[:10])
            else:
                logger.warning("no model list available, using fallback model table")
                for candidates in FALLBACK_MODELS.values():
                    self._available.update(candidates)
            self._initialized = True

    async def _fetch_available_models(self) -> list[str]:
        headers = {"Authorization": f"Bearer {self.api_key}", "x-api-key": self.api_key}
        for endpoint in MODEL_LIST_ENDPOINTS:
            url = f"{self.base_url}{endpoint}"
            try:
                status, body = await _fetch_json(url, headers, self.timeout_seconds)
            except UpstreamError as exc:
                logger.debug("model list fetch failed url=%s error=%s", url, exc)
                continue
            if status >= 400 or not isinstance(body, dict):
                logger.debug("model list unavailable url=%s status=%s", url, status)
                continue
            data = body.get("data") or []
            return [str(item["id"]) for item in data if isinstance(item, dict) and item.get("id")]
        return []

    def best_match(self, requested: str) -> str | None:
        candidates = [
            _Candidate(model=model, score=score, date=extract_date(model))
            for model in sorted(self._available)
            if (score := similarity(requested, model)) > MIN_SIMILARITY
        ]
        if not candidates:
            return None
        candidates.sort(key=cmp_to_key(_rank))
        return candidates[0].model

    async def map_model(self, requested: str) -> str:
        await self.initialize()
        with self._cache_lock:
            cached = self._cache.get(requested)
        if cached is not None:
            return cached
        if requested in self._available:
            mapped = requested
        else:
            match = self.best_match(requested)
            if match is None:
                logger.warning(
                    "no suitable model mapping requested=%s available=%s",
                    requested,
                    self.available_claude_models()[:5],
                )
                return requested
            mapped = match
            logger.info("model mapped from=%s to=%s", requested, mapped)
        with self._cache_lock:
            self._cache[requested] = mapped
        return mapped

    def available_claude_models(self) -> list[str]:
        return sorted(model for model in self._available if "claude" in model.lower())

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()
        self._available.clear()
        self._initialized = False
        logger.info("model mapper cache cleared")

    def stats(self) -> dict:
        with self._cache_lock:
            cached = len(self._cache)
        return {
            "initialized": self._initialized,
            "cachedMappings": cached,
            "availableModels": len(self._available),
            "claudeModels": len(self.available_claude_models()),
        }
