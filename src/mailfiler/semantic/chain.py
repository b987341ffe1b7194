"""Invoice decision chain.

The chain is an ordered list of strategies. Each strategy either returns an
``InvoiceSignal`` (it was applicable and decided) or ``None`` (defer to the
next one). The first signal wins; an exhausted list means "not an invoice".

Which strategies make up the list depends on the configured method and on
the message:

    disabled                               -> []
    only PDFs wanted, message has no PDF   -> [keyword] if fallback else []
    sender domain skips AI                 -> [keyword]
    method "email"                         -> [sender list]
    method "gemini"                        -> [gemini, openai?, keyword?]
    method "openai"                        -> [openai, keyword?]
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config import Config, InvoiceDetectionConfig
from ..exceptions import TransientProviderError
from ..ingestion.base import Mailbox
from ..models import InvoiceSignal, MailAttachment, MailMessage, SignalSource
from ..processing.attachment_filter import file_extension
from ..processing.sender import extract_domain, extract_email
from ..storage.properties import PropertyStore
from .history import HistoricalPatternAnalyzer
from .inference import GeminiScorer, InvoiceScorer, OpenAIScorer, ScoringRequest
from .rules import extract_keyword_hits, has_pdf, matches_keywords, sender_in_list

logger = logging.getLogger(__name__)


@dataclass
class MessageContext:
    """A message plus the sender facts every strategy needs."""

    message: MailMessage
    attachments: list[MailAttachment]
    sender_email: str
    sender_domain: str

    @classmethod
    def build(cls, message: MailMessage, attachments: list[MailAttachment]) -> "MessageContext":
        return cls(
            message=message,
            attachments=list(attachments),
            sender_email=extract_email(message.from_address),
            sender_domain=extract_domain(message.from_address),
        )


class InvoiceStrategy(ABC):
    name: str = "strategy"

    @abstractmethod
    def evaluate(self, context: MessageContext) -> Optional[InvoiceSignal]:
        """Return a signal, or None when this strategy cannot decide."""
        pass


class KeywordStrategy(InvoiceStrategy):
    name = "keyword"

    def __init__(self, keywords: list[str]):
        self.keywords = keywords

    def evaluate(self, context: MessageContext) -> Optional[InvoiceSignal]:
        hit = matches_keywords(context.message.subject, context.message.body_text, self.keywords)
        if hit:
            logger.debug(f"Keyword {hit!r} found in message {context.message.id}")
        return InvoiceSignal(source=SignalSource.KEYWORD, matched=hit is not None)


class SenderListStrategy(InvoiceStrategy):
    name = "sender_list"

    def __init__(self, entries: list[str]):
        self.entries = entries

    def evaluate(self, context: MessageContext) -> Optional[InvoiceSignal]:
        entry = sender_in_list(context.sender_email, self.entries)
        return InvoiceSignal(source=SignalSource.SENDER_LIST, matched=entry is not None)


class AIStrategy(InvoiceStrategy):
    """Wraps one scorer; provider failures mean "not applicable"."""

    def __init__(
        self,
        scorer: InvoiceScorer,
        threshold: float,
        keywords: list[str],
        history: Optional[HistoricalPatternAnalyzer] = None,
    ):
        self.scorer = scorer
        self.name = scorer.name
        self.threshold = threshold
        self.keywords = keywords
        self.history = history

    def build_request(self, context: MessageContext) -> ScoringRequest:
        message = context.message
        pattern = self.history.for_sender(context.sender_email) if self.history else None
        return ScoringRequest(
            subject=message.subject,
            sender=context.sender_email,
            sender_domain=context.sender_domain,
            date=message.date.isoformat() if message.date else None,
            body=message.body_text,
            attachment_types=[file_extension(a.filename) or "none" for a in context.attachments],
            attachment_content_types=[a.content_type for a in context.attachments],
            keywords_found=extract_keyword_hits(message.subject, message.body_text, self.keywords),
            historical_pattern=pattern,
        )

    def evaluate(self, context: MessageContext) -> Optional[InvoiceSignal]:
        try:
            confidence = self.scorer.score(self.build_request(context))
        except TransientProviderError as e:
            logger.warning(f"{self.name} unavailable for message {context.message.id}: {e}")
            return None
        except Exception as e:
            logger.error(f"{self.name} scorer failed for message {context.message.id}: {e}")
            return None

        return InvoiceSignal(
            source=SignalSource.AI_CONFIDENCE,
            matched=confidence >= self.threshold,
            confidence=confidence,
            provider=self.name,
        )


class InvoiceDecisionChain:
    """Decide whether a message is an invoice. Never raises."""

    def __init__(
        self,
        config: InvoiceDetectionConfig,
        gemini: Optional[InvoiceScorer] = None,
        openai: Optional[InvoiceScorer] = None,
        history: Optional[HistoricalPatternAnalyzer] = None,
    ):
        self.config = config
        self.keyword_strategy = KeywordStrategy(config.keywords)
        self.sender_strategy = SenderListStrategy(config.invoice_senders)
        self.gemini = self._ai(gemini, history)
        self.openai = self._ai(openai, history)
        self._decisions: dict[str, bool] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        property_store: Optional[PropertyStore] = None,
        mailbox: Optional[Mailbox] = None,
    ) -> "InvoiceDecisionChain":
        """Build scorers for whichever API keys resolve."""
        detection = config.invoice_detection
        if not detection.enabled:
            return cls(detection)

        gemini = openai = None
        gemini_key = config.resolve_api_key("gemini", property_store)
        if gemini_key and detection.method == "gemini":
            gemini = GeminiScorer(gemini_key, detection.gemini_model, detection.gemini_timeout_sec)
        openai_key = config.resolve_api_key("openai", property_store)
        if openai_key and detection.method in ("gemini", "openai"):
            openai = OpenAIScorer(
                openai_key,
                detection.openai_model,
                detection.openai_timeout_sec,
                detection.openai_max_body_chars,
            )

        history = None
        if detection.use_historical_patterns and mailbox is not None:
            history = HistoricalPatternAnalyzer(
                mailbox,
                detection.confirmed_invoice_label,
                detection.keywords,
                detection.max_history_messages,
            )
        return cls(detection, gemini=gemini, openai=openai, history=history)

    def _ai(self, scorer, history) -> Optional[AIStrategy]:
        if scorer is None:
            return None
        return AIStrategy(scorer, self.config.ai_confidence_threshold, self.config.keywords, history)

    def _domain_skips_ai(self, domain: str) -> bool:
        return any(domain == d or domain.endswith(f".{d}") for d in self.config.skip_ai_for_domains)

    def plan(self, context: MessageContext) -> list[InvoiceStrategy]:
        """The ordered strategies for this message."""
        config = self.config
        keyword_fallback = [self.keyword_strategy] if config.fallback_to_keywords else []

        if not config.enabled:
            return []
        if config.only_analyze_pdfs and not has_pdf(context.attachments, config.strict_pdf_check):
            return keyword_fallback
        if self._domain_skips_ai(context.sender_domain):
            return [self.keyword_strategy]
        if config.method == "email":
            return [self.sender_strategy]
        if config.method == "gemini":
            ai = [s for s in (self.gemini, self.openai) if s is not None]
            return ai + keyword_fallback
        if config.method == "openai":
            ai = [self.openai] if self.openai is not None else []
            return ai + keyword_fallback

        logger.warning(f"Unknown invoice detection method {config.method!r}")
        return []

    def decide(self, message: MailMessage, attachments: list[MailAttachment]) -> Optional[InvoiceSignal]:
        """Run the plan and return the deciding signal, if any strategy applied."""
        context = MessageContext.build(message, attachments)
        for strategy in self.plan(context):
            signal = strategy.evaluate(context)
            if signal is not None:
                logger.info(
                    f"Message {message.id}: {strategy.name} says "
                    f"{'invoice' if signal.matched else 'not invoice'}"
                    + (f" (confidence {signal.confidence:.2f})" if signal.confidence is not None else "")
                )
                return signal
        return None

    def is_invoice(self, message: MailMessage, attachments: list[MailAttachment]) -> bool:
        """True when the deciding strategy matched. Memoized per message id."""
        if message.id in self._decisions:
            return self._decisions[message.id]

        try:
            signal = self.decide(message, attachments)
            decision = bool(signal and signal.matched)
        except Exception as e:
            logger.error(f"Invoice detection failed for message {message.id}: {e}")
            decision = False

        self._decisions[message.id] = decision
        return decision
