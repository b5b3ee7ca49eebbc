"""Detection of KQL the model asks to have executed.

A reply only triggers execution when it both states the intent to run
something and carries a fenced block that looks like KQL.
"""

import re
from typing import Callable, Optional

QueryIntentDetector = Callable[[str], Optional[str]]

FENCED_BLOCK_RE = re.compile(r"```(?:kql|kusto)?\s*([\s\S]*?)```")

INTENT_PHRASES = ("execute", "run", "let me query")
QUERY_TOKENS = ("customevents", "where", "project")


def detect_query_intent(reply: str) -> Optional[str]:
    """Return the query the reply asks to run, or None.

    Args:
        reply: Assistant reply text.

    Returns:
        The stripped content of the first fenced block when the reply contains
        an intent phrase and the block contains a KQL token; otherwise None.
    """
    match = FENCED_BLOCK_RE.search(reply)
    if not match:
        return None
    lowered = reply.lower()
    if not any(phrase in lowered for phrase in INTENT_PHRASES):
        return None
    query = match.group(1).strip()
    if not any(token in query.lower() for token in QUERY_TOKENS):
        return None
    return query
