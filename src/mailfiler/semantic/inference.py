"""AI invoice scorers for the decision chain.

Each scorer turns a message summary into a confidence in [0, 1]. Every failure
(transport error, non-2xx status, unparseable reply) is raised as
``TransientProviderError`` so the chain can move on to its next strategy.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import openai
import requests
from openai import OpenAI
from pydantic import BaseModel, Field

from ..exceptions import TransientProviderError
from ..models import HistoricalPattern

logger = logging.getLogger(__name__)

_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
_YES_NO_PATTERN = re.compile(r"^(yes|no)\b")

INVOICE_CRITERIA = """An invoice typically contains:
- A clear request for payment
- An invoice number or reference
- A specific amount to be paid
- Payment instructions or terms

Just mentioning words like 'invoice', 'bill', 'receipt', 'factura', 'recibo' or 'pago' is NOT enough to classify as an invoice.
The email must be specifically about a payment document."""


class ScoringRequest(BaseModel):
    """What the chain knows about a message when asking a provider."""

    subject: str = ""
    sender: str = ""
    sender_domain: str = ""
    date: Optional[str] = None
    body: Optional[str] = None
    attachment_types: list[str] = Field(default_factory=list)
    attachment_content_types: list[str] = Field(default_factory=list)
    keywords_found: list[str] = Field(default_factory=list)
    historical_pattern: Optional[HistoricalPattern] = None

    def metadata_payload(self) -> dict:
        """Privacy-preserving payload: no body, no full sender address."""
        payload = {
            "subject": self.subject,
            "senderDomain": self.sender_domain,
            "date": self.date,
            "hasAttachments": bool(self.attachment_types),
            "attachmentTypes": self.attachment_types,
            "attachmentContentTypes": self.attachment_content_types,
            "keywordsFound": self.keywords_found,
        }
        if self.historical_pattern is not None:
            payload["historicalPattern"] = self.historical_pattern.model_dump(
                exclude={"sender"}, exclude_none=True
            )
        return payload


def parse_confidence(text: str, provider: str) -> float:
    """Read a confidence from a reply: a number in [0, 1], or yes/no."""
    cleaned = (text or "").strip().strip('"').lower()
    answer = _YES_NO_PATTERN.match(cleaned)
    if answer:
        return 1.0 if answer.group(1) == "yes" else 0.0

    match = _NUMBER_PATTERN.search(cleaned)
    if not match:
        raise TransientProviderError(provider, f"no confidence in reply {text!r}")
    confidence = float(match.group(0))
    if not 0.0 <= confidence <= 1.0:
        raise TransientProviderError(provider, f"confidence {confidence} outside [0, 1]")
    return confidence


class InvoiceScorer(ABC):
    """One AI provider."""

    name: str = "ai"

    @abstractmethod
    def score(self, request: ScoringRequest) -> float:
        """Return invoice confidence in [0, 1].

        Raises:
            TransientProviderError: On any provider failure
        """
        pass


class GeminiScorer(InvoiceScorer):
    """Gemini over its REST API. Only ever sees message metadata."""

    name = "gemini"
    API_BASE = "https://generativelanguage.googleapis.com"
    API_VERSIONS = ("v1", "v1beta")

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.0-flash",
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.timeout = timeout
        self.session = session or requests.Session()
        logger.info(f"Gemini scorer initialized with model: {model_name}")

    def build_prompt(self, request: ScoringRequest) -> str:
        metadata = json.dumps(request.metadata_payload(), indent=2, ensure_ascii=False)
        return f"""Based on these email metadata, assess the likelihood that this contains an invoice.
You don't have access to the full content for privacy reasons.

Metadata: {metadata}

{INVOICE_CRITERIA}

On a scale from 0.0 to 1.0, where:
- 0.0 means definitely NOT an invoice
- 1.0 means definitely IS an invoice

Provide ONLY a single number between 0.0 and 1.0 representing your confidence.
Example responses: "0.2", "0.85", "0.99"
"""

    def score(self, request: ScoringRequest) -> float:
        payload = {
            "contents": [{"parts": [{"text": self.build_prompt(request)}]}],
            "generationConfig": {"temperature": 0.05, "maxOutputTokens": 10},
        }

        last_error: Optional[TransientProviderError] = None
        for version in self.API_VERSIONS:
            url = f"{self.API_BASE}/{version}/models/{self.model_name}:generateContent"
            try:
                response = self.session.post(
                    url,
                    params={"key": self.api_key},
                    json=payload,
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                last_error = TransientProviderError(self.name, f"{version} request failed: {e}")
                logger.warning(str(last_error))
                continue

            if response.status_code >= 400:
                last_error = TransientProviderError(
                    self.name,
                    f"{version} returned {response.status_code}",
                    status_code=response.status_code,
                )
                logger.warning(str(last_error))
                continue

            try:
                text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
            except (ValueError, KeyError, IndexError, TypeError) as e:
                raise TransientProviderError(self.name, f"malformed response: {e}") from e

            confidence = parse_confidence(text, self.name)
            logger.debug(f"Gemini ({version}) confidence {confidence} for {request.subject!r}")
            return confidence

        raise last_error or TransientProviderError(self.name, "no API version available")

    def list_models(self) -> list[str]:
        """Names of the models this key can call (``models/...``)."""
        url = f"{self.API_BASE}/v1beta/models"
        try:
            response = self.session.get(url, params={"key": self.api_key}, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientProviderError(self.name, f"model listing failed: {e}") from e
        if response.status_code >= 400:
            raise TransientProviderError(
                self.name,
                f"model listing returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return [model["name"] for model in response.json().get("models", [])]
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise TransientProviderError(self.name, f"malformed model list: {e}") from e


class OpenAIScorer(InvoiceScorer):
    """OpenAI chat completions. Receives a truncated plain-text body."""

    name = "openai"

    SYSTEM_PROMPT = (
        "You are an assistant that analyzes emails to determine if they contain invoices or bills. "
        "Be very precise and conservative in your analysis.\n\n"
        "Check the content in both English and Spanish languages.\n\n"
        f"{INVOICE_CRITERIA}\n\n"
        "Reply with ONLY a number between 0.0 and 1.0: your confidence that the email is "
        "specifically about an invoice, bill or receipt that requires payment."
    )

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-3.5-turbo",
        timeout: float = 20.0,
        max_body_chars: int = 4000,
        client: Optional[OpenAI] = None,
    ):
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)
        self.model_name = model_name
        self.max_body_chars = max_body_chars
        logger.info(f"OpenAI scorer initialized with model: {model_name}")

    def build_prompt(self, request: ScoringRequest) -> str:
        body = (request.body or "")[: self.max_body_chars]
        prompt = f"""From: {request.sender}
Date: {request.date or ""}
Subject: {request.subject}
Attachments: {", ".join(request.attachment_types) or "none"}

{body}
"""
        if request.historical_pattern is not None:
            history = request.historical_pattern.model_dump(exclude={"sender"}, exclude_none=True)
            prompt += f"\nPrevious confirmed invoices from this sender: {json.dumps(history)}\n"
        return prompt

    def score(self, request: ScoringRequest) -> float:
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": self.SYSTEM_PROMPT},
                    {"role": "user", "content": self.build_prompt(request)},
                ],
                temperature=0.1,
                max_tokens=10,
            )
        except openai.APIStatusError as e:
            raise TransientProviderError(self.name, str(e), status_code=e.status_code) from e
        except openai.OpenAIError as e:
            raise TransientProviderError(self.name, str(e)) from e

        try:
            text = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise TransientProviderError(self.name, f"malformed response: {e}") from e

        confidence = parse_confidence(text, self.name)
        logger.debug(f"OpenAI confidence {confidence} for {request.subject!r}")
        return confidence
