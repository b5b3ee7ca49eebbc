"""Backend clients: App Insights queries and chat completions."""

from .appinsights import (
    AppInsightsClient,
    build_recent_events_query,
    build_session_events_query,
)
from .formatting import format_compact, format_verbose, get_row_count
from .llm import ChatTransport

__all__ = [
    "AppInsightsClient",
    "ChatTransport",
    "build_recent_events_query",
    "build_session_events_query",
    "format_compact",
    "format_verbose",
    "get_row_count",
]
