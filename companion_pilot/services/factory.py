from __future__ import annotations

import logging

from ..config import MODEL_PROVIDERS, Settings
from .base import ModelInvoker
from .gemini_client import GeminiClient
from .mock_model import MockModelClient
from .openrouter_client import OpenRouterClient


logger = logging.getLogger("companion_pilot")


def _openrouter(settings: Settings) -> OpenRouterClient:
    assert settings.openrouter_api_key
    return OpenRouterClient(
        api_key=settings.openrouter_api_key,
        model=settings.openrouter_model,
        timeout_seconds=settings.model_timeout_seconds,
        temperature=settings.model_temperature,
        base_url=settings.openrouter_base_url,
        referer=settings.openrouter_referer,
        title=settings.openrouter_title,
    )


def _gemini(settings: Settings) -> GeminiClient:
    assert settings.gemini_api_key
    return GeminiClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        timeout_seconds=settings.model_timeout_seconds,
        temperature=settings.model_temperature,
        base_url=settings.gemini_base_url,
    )


def build_model_invoker(settings: Settings) -> ModelInvoker:
    """Select the model backend once at startup. Missing credentials fall back to the mock model."""
    provider = settings.model_provider
    if provider not in MODEL_PROVIDERS:
        logger.warning("[model] unknown MODEL_PROVIDER=%s; using auto selection", provider)
        provider = "auto"

    if provider == "mock":
        logger.warning("[model] MODEL_PROVIDER=mock; using mock model provider")
        return MockModelClient()

    if provider == "openrouter":
        if settings.openrouter_api_key:
            logger.info("[model] using OpenRouter model provider (model=%s)", settings.openrouter_model)
            return _openrouter(settings)
        logger.warning("[model] MODEL_PROVIDER=openrouter but OPENROUTER_API_KEY is missing; using mock model provider")
        return MockModelClient()

    if provider == "gemini":
        if settings.gemini_api_key:
            logger.info("[model] using Gemini model provider (model=%s)", settings.gemini_model)
            return _gemini(settings)
        logger.warning("[model] MODEL_PROVIDER=gemini but GEMINI_API_KEY is missing; using mock model provider")
        return MockModelClient()

    if settings.openrouter_api_key:
        logger.info("[model] using OpenRouter model provider (auto mode, model=%s)", settings.openrouter_model)
        return _openrouter(settings)
    if settings.gemini_api_key:
        logger.info("[model] using Gemini model provider (auto mode, model=%s)", settings.gemini_model)
        return _gemini(settings)
    logger.warning("[model] no model API key configured; using mock model provider")
    return MockModelClient()
