"""Invoice detection: heuristics, AI scorers and the decision chain."""

from .chain import InvoiceDecisionChain, MessageContext
from .history import HistoricalPatternAnalyzer, analyze_history, classify_frequency
from .inference import GeminiScorer, InvoiceScorer, OpenAIScorer, ScoringRequest
from .rules import matches_keywords, sender_in_list, sender_matches_entry

__all__ = [
    "InvoiceDecisionChain",
    "MessageContext",
    "HistoricalPatternAnalyzer",
    "analyze_history",
    "classify_frequency",
    "GeminiScorer",
    "InvoiceScorer",
    "OpenAIScorer",
    "ScoringRequest",
    "matches_keywords",
    "sender_in_list",
    "sender_matches_entry",
]
