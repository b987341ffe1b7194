"""Verify the Gemini and OpenAI API keys the invoice chain would use."""

import logging
from typing import Callable, Optional

from pydantic import BaseModel, Field

from .config import Config
from .exceptions import TransientProviderError
from .semantic.inference import GeminiScorer, InvoiceScorer, OpenAIScorer, ScoringRequest
from .storage.properties import PropertyStore

logger = logging.getLogger(__name__)

PROVIDERS = ("gemini", "openai")

_CHECK_REQUEST = ScoringRequest(
    subject="API key check",
    sender="check@example.com",
    sender_domain="example.com",
    body="Is this a test?",
)


class KeyCheckResult(BaseModel):
    """Outcome of checking one provider key."""

    provider: str
    found: bool = False
    masked_key: Optional[str] = None
    valid: bool = False
    confidence: Optional[float] = None
    detail: Optional[str] = None
    models: list[str] = Field(default_factory=list)


def mask_api_key(api_key: Optional[str]) -> str:
    """First and last four characters, the rest starred (at most ten stars)."""
    if not api_key or len(api_key) < 8:
        return "invalid key (too short)"
    stars = "*" * min(len(api_key) - 8, 10)
    return f"{api_key[:4]}{stars}{api_key[-4:]} ({len(api_key)} chars)"


def _build_scorer(config: Config, provider: str, api_key: str) -> InvoiceScorer:
    detection = config.invoice_detection
    if provider == "gemini":
        return GeminiScorer(api_key, detection.gemini_model, detection.gemini_timeout_sec)
    return OpenAIScorer(
        api_key,
        detection.openai_model,
        detection.openai_timeout_sec,
        detection.openai_max_body_chars,
    )


def check_api_key(
    config: Config,
    provider: str,
    property_store: Optional[PropertyStore] = None,
    scorer_factory: Optional[Callable[[str, str], InvoiceScorer]] = None,
    list_models: bool = False,
) -> KeyCheckResult:
    """Resolve one provider key and make a single scoring call with it.

    Args:
        config: Application configuration
        provider: "gemini" or "openai"
        property_store: Searched after the configuration
        scorer_factory: Builds the scorer from (provider, api_key); tests inject fakes
        list_models: Also list the Gemini models the key can call

    Returns:
        KeyCheckResult: Never raises for provider failures
    """
    result = KeyCheckResult(provider=provider)
    api_key = config.resolve_api_key(provider, property_store)
    if not api_key:
        result.detail = "key not found in config or property store"
        logger.warning(f"{provider} API key not found")
        return result

    result.found = True
    result.masked_key = mask_api_key(api_key)
    logger.info(f"Found {provider} API key: {result.masked_key}")

    factory = scorer_factory or (lambda name, key: _build_scorer(config, name, key))
    scorer = factory(provider, api_key)
    try:
        result.confidence = scorer.score(_CHECK_REQUEST)
        result.valid = True
        logger.info(f"{provider} API key is valid (reply confidence {result.confidence})")
    except TransientProviderError as e:
        result.detail = str(e)
        logger.error(f"{provider} API key check failed: {e}")
        return result

    if list_models and isinstance(scorer, GeminiScorer):
        try:
            result.models = scorer.list_models()
        except TransientProviderError as e:
            result.detail = str(e)
            logger.warning(f"Could not list Gemini models: {e}")
    return result


def check_api_keys(
    config: Config,
    property_store: Optional[PropertyStore] = None,
    scorer_factory: Optional[Callable[[str, str], InvoiceScorer]] = None,
    list_models: bool = False,
) -> list[KeyCheckResult]:
    """Check both provider keys."""
    return [
        check_api_key(config, provider, property_store, scorer_factory, list_models)
        for provider in PROVIDERS
    ]
