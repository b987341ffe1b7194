from __future__ import annotations

from mailfiler.config import OPENAI_API_KEY_PROPERTY
from mailfiler.ingestion.memory import InMemoryMailbox
from mailfiler.models import SignalSource
from mailfiler.semantic.chain import InvoiceDecisionChain
from mailfiler.semantic.history import HistoricalPatternAnalyzer
from mailfiler.semantic.inference import GeminiScorer, OpenAIScorer
from mailfiler.storage.properties import InMemoryPropertyStore
from tests.helpers import (
    FakeScorer,
    make_attachment,
    make_config,
    make_detection_config,
    make_message,
    make_thread,
)


def decide(chain: InvoiceDecisionChain, message) -> bool:
    return chain.is_invoice(message, message.attachments)


def test_disabled_detection_is_never_invoice() -> None:
    gemini = FakeScorer("gemini", 1.0)
    chain = InvoiceDecisionChain(make_detection_config(enabled=False), gemini=gemini)

    assert decide(chain, make_message(subject="Invoice #123")) is False
    assert gemini.requests == []


def test_provider_failure_falls_back_to_keywords() -> None:
    chain = InvoiceDecisionChain(make_detection_config(), gemini=FakeScorer("gemini"))

    assert decide(chain, make_message(subject="Invoice #123")) is True


def test_provider_failure_without_keyword_match_is_not_invoice() -> None:
    chain = InvoiceDecisionChain(make_detection_config(), gemini=FakeScorer("gemini"))

    assert decide(chain, make_message(subject="Holiday photos")) is False


def test_provider_failure_without_fallback_is_not_invoice() -> None:
    chain = InvoiceDecisionChain(
        make_detection_config(fallback_to_keywords=False), gemini=FakeScorer("gemini")
    )

    assert decide(chain, make_message(subject="Invoice #123")) is False


def test_gemini_failure_tries_openai_next() -> None:
    openai = FakeScorer("openai", 0.95)
    chain = InvoiceDecisionChain(make_detection_config(), gemini=FakeScorer("gemini"), openai=openai)

    signal = chain.decide(make_message(subject="Statement"), [make_attachment()])

    assert signal.provider == "openai"
    assert signal.matched is True
    assert len(openai.requests) == 1


def test_ai_confidence_is_terminal() -> None:
    chain = InvoiceDecisionChain(make_detection_config(), gemini=FakeScorer("gemini", 0.5))

    signal = chain.decide(make_message(subject="Invoice #123"), [make_attachment()])

    assert signal.source == SignalSource.AI_CONFIDENCE
    assert signal.confidence == 0.5
    assert signal.matched is False


def test_threshold_is_inclusive() -> None:
    chain = InvoiceDecisionChain(
        make_detection_config(ai_confidence_threshold=0.9), gemini=FakeScorer("gemini", 0.9)
    )

    assert decide(chain, make_message()) is True


def test_no_pdf_goes_straight_to_keywords() -> None:
    gemini = FakeScorer("gemini", 1.0)
    chain = InvoiceDecisionChain(make_detection_config(), gemini=gemini)
    message = make_message(
        subject="Your receipt",
        attachments=[make_attachment("receipt.png", content_type="image/png")],
    )

    assert decide(chain, message) is True
    assert gemini.requests == []


def test_no_pdf_without_fallback_is_not_invoice() -> None:
    chain = InvoiceDecisionChain(
        make_detection_config(fallback_to_keywords=False), gemini=FakeScorer("gemini", 1.0)
    )
    message = make_message(attachments=[make_attachment("scan.png", content_type="image/png")])

    assert decide(chain, message) is False


def test_strict_pdf_check_requires_pdf_mime() -> None:
    gemini = FakeScorer("gemini", 1.0)
    chain = InvoiceDecisionChain(make_detection_config(strict_pdf_check=True), gemini=gemini)
    message = make_message(
        subject="Statement",
        attachments=[make_attachment("statement.pdf", content_type="application/octet-stream")],
    )

    assert decide(chain, message) is False
    assert gemini.requests == []


def test_skip_ai_domains_use_keywords_only() -> None:
    gemini = FakeScorer("gemini", 0.0)
    chain = InvoiceDecisionChain(
        make_detection_config(skip_ai_for_domains=["vendor.example"]), gemini=gemini
    )

    assert decide(chain, make_message(subject="Factura enero")) is True
    assert decide(chain, make_message("m2", subject="Invoice 2024-01")) is True
    assert gemini.requests == []


def test_email_method_matches_sender_list() -> None:
    chain = InvoiceDecisionChain(
        make_detection_config(method="email", invoice_senders=["billing*@vendor.example"])
    )

    assert decide(chain, make_message(from_address="billing-eu@vendor.example")) is True
    assert decide(chain, make_message("m2", from_address="news@vendor.example", subject="Invoice")) is False


def test_openai_method_falls_back_to_keywords() -> None:
    chain = InvoiceDecisionChain(make_detection_config(method="openai"), openai=FakeScorer("openai"))

    assert decide(chain, make_message(subject="Payment received")) is True


def test_decision_is_memoized_per_message() -> None:
    gemini = FakeScorer("gemini", 0.95)
    chain = InvoiceDecisionChain(make_detection_config(), gemini=gemini)
    message = make_message()

    assert decide(chain, message) is True
    assert decide(chain, message) is True
    assert len(gemini.requests) == 1


def test_scoring_request_carries_metadata() -> None:
    gemini = FakeScorer("gemini", 0.1)
    chain = InvoiceDecisionChain(make_detection_config(), gemini=gemini)

    decide(chain, make_message(subject="Invoice #4711", body_text="Amount due: $99.00"))

    request = gemini.requests[0]
    assert request.sender_domain == "vendor.example"
    assert request.attachment_types == [".pdf"]
    assert "invoice" in request.keywords_found
    assert "#4711" in request.keywords_found
    assert "body" not in request.metadata_payload()


def test_history_is_added_to_request() -> None:
    mailbox = InMemoryMailbox(
        [
            make_thread(
                f"old-{n}",
                subject=f"Invoice {n}",
                days=-30 * n,
                labels={"Invoice"},
                from_address="billing@vendor.example",
            )
            for n in (1, 2, 3)
        ]
    )
    history = HistoricalPatternAnalyzer(mailbox, "Invoice", ["invoice"])
    gemini = FakeScorer("gemini", 0.95)
    chain = InvoiceDecisionChain(make_detection_config(), gemini=gemini, history=history)

    decide(chain, make_message())

    pattern = gemini.requests[0].historical_pattern
    assert pattern is not None
    assert pattern.sample_size == 3
    assert pattern.frequency == "monthly"


def test_from_config_builds_scorers_from_resolved_keys() -> None:
    store = InMemoryPropertyStore({OPENAI_API_KEY_PROPERTY: "sk-from-store"})
    config = make_config(detection=make_detection_config())

    chain = InvoiceDecisionChain.from_config(config, store)

    assert isinstance(chain.gemini.scorer, GeminiScorer)
    assert isinstance(chain.openai.scorer, OpenAIScorer)


def test_from_config_disabled_has_no_scorers() -> None:
    chain = InvoiceDecisionChain.from_config(make_config())

    assert chain.gemini is None
    assert chain.openai is None
    assert decide(chain, make_message(subject="Invoice")) is False
