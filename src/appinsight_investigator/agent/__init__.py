"""Investigation agent: conversation state and query-augmented chat turns."""

from .agent import InvestigatorAgent, load_investigator_prompt
from .intent import QueryIntentDetector, detect_query_intent
from .session import ChatSession

__all__ = [
    "ChatSession",
    "InvestigatorAgent",
    "QueryIntentDetector",
    "detect_query_intent",
    "load_investigator_prompt",
]
