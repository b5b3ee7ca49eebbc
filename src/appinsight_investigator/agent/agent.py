import logging
from typing import Callable, Optional

from ..errors import InvestigatorError
from ..models import QueryRunResult, SessionLoadResult, TelemetryResult
from ..services.appinsights import AppInsightsClient
from ..services.formatting import RULE, format_compact, get_row_count
from ..services.llm import ChatTransport
from ..settings import Settings, SettingsStore
from .intent import QueryIntentDetector, detect_query_intent
from .session import ChatSession

logger = logging.getLogger(__name__)


NO_SESSION_MESSAGE = 'No session loaded. Use "session <id>" to load a session first.'

INVESTIGATE_TEMPLATE = (
    'User complaint: "{complaint}"\n\n'
    "Based on the session data provided, investigate this issue. Analyze the "
    "events, look for errors, timing issues, or anything that might explain "
    "the user's complaint.\n\n"
    "If you need to run additional queries, provide the KQL query in a code "
    "block and I will execute it for you."
)

FOLLOW_UP_PROMPT = (
    "Here are the query results. Please analyze them and continue the investigation."
)


def load_investigator_prompt(settings: Settings) -> str:
    """Return the system prompt from the prompt file, or the built-in one.

    Args:
        settings: Settings carrying ``investigator_prompt_path`` and the
            built-in ``investigator_system_prompt``.

    Returns:
        str: File contents when the file exists and is readable, else the
            built-in prompt.
    """
    path = settings.investigator_prompt_path
    try:
        if path.is_file():
            logger.info("Loading investigator prompt from %s", path)
            return path.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning("Error loading %s: %s", path, e)
    return settings.investigator_system_prompt


class InvestigatorAgent:
    """Drives an investigation of one App Insights session through a chat model.

    Holds a single :class:`ChatSession`; loading a session injects its events
    as context, and every model reply is checked for a KQL query the model
    wants executed. Public operations never raise backend errors.
    """

    def __init__(
        self,
        store: SettingsStore,
        query_client: AppInsightsClient | None = None,
        transport: ChatTransport | None = None,
        intent_detector: QueryIntentDetector = detect_query_intent,
        query_listener: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._store = store
        self._query_client = query_client or AppInsightsClient(store)
        self._transport = transport or ChatTransport(store)
        self._detect_query = intent_detector
        self._query_listener = query_listener
        self._chat_session = ChatSession(self._transport, load_investigator_prompt(store.settings))
        self._current_session_id: str | None = None
        self._session_data: TelemetryResult | None = None
        self._event_count = 0

    @property
    def chat_session(self) -> ChatSession:
        return self._chat_session

    @property
    def current_session_id(self) -> str | None:
        return self._current_session_id

    @property
    def session_data(self) -> TelemetryResult | None:
        return self._session_data

    @property
    def event_count(self) -> int:
        return self._event_count

    async def set_session(self, session_id: str) -> SessionLoadResult:
        """Load a session's events and add them to the conversation.

        Args:
            session_id: App Insights ``session_Id`` to investigate.

        Returns:
            SessionLoadResult: success with the event count, or failure with
                the error message. On failure the previous state is kept.
        """
        logger.info(f"Loading session {session_id}")
        try:
            data = await self._query_client.get_session_events(session_id)
        except InvestigatorError as e:
            logger.warning("Failed to load session %s: %s", session_id, e)
            return SessionLoadResult(success=False, error=str(e))

        event_count = get_row_count(data)
        self._chat_session.add_context(
            f"Session ID: {session_id}\n"
            f"Session Data ({event_count} events):\n"
            f"{format_compact(data)}"
        )
        self._current_session_id = session_id
        self._session_data = data
        self._event_count = event_count
        return SessionLoadResult(success=True, event_count=event_count)

    async def investigate(self, complaint: str) -> str:
        """Ask the model to explain ``complaint`` using the loaded session.

        Args:
            complaint: What the user reported, in their words.

        Returns:
            str: The model's analysis (plus any follow-up on an executed
                query), guidance when no session is loaded, or an error line.
        """
        if not self._current_session_id:
            return NO_SESSION_MESSAGE

        prompt = INVESTIGATE_TEMPLATE.format(complaint=complaint)
        try:
            reply = await self._chat_session.send(prompt)
            return await self._process_reply(reply)
        except InvestigatorError as e:
            logger.warning("Investigation failed: %s", e)
            return f"Error during investigation: {e}"

    async def chat(self, text: str) -> str:
        """Send free text as a turn and process the reply."""
        try:
            reply = await self._chat_session.send(text)
            return await self._process_reply(reply)
        except InvestigatorError as e:
            logger.warning("Chat turn failed: %s", e)
            return f"Error: {e}"

    async def _process_reply(self, reply: str) -> str:
        query = self._detect_query(reply)
        if query is None:
            return reply

        logger.info("Model requested query execution")
        if self._query_listener is not None:
            self._query_listener(query)

        try:
            result = await self._query_client.execute_query(query)
            row_count = get_row_count(result)
            self._chat_session.add_context(f"Query result ({row_count} rows):\n{format_compact(result)}")
            follow_up = await self._chat_session.send(FOLLOW_UP_PROMPT)
        except InvestigatorError as e:
            logger.warning("Model-requested query or its follow-up failed: %s", e)
            return f"{reply}\n\n[Query execution failed: {e}]"

        return (
            f"{reply}\n\n{RULE * 60}\n"
            f"[Query Results: {row_count} row(s)]\n"
            f"{RULE * 60}\n\n{follow_up}"
        )

    async def execute_custom_query(self, query: str) -> QueryRunResult:
        """Run ``query`` outside the conversation and add its result as context.

        Returns:
            QueryRunResult: compact data, row count and parsed result on
                success; the error message otherwise.
        """
        try:
            result = await self._query_client.execute_query(query)
        except InvestigatorError as e:
            logger.warning("Custom query failed: %s", e)
            return QueryRunResult(success=False, error=str(e))

        data = format_compact(result)
        row_count = get_row_count(result)
        self._chat_session.add_context(f"Custom query result ({row_count} rows):\n{data}")
        return QueryRunResult(success=True, data=data, row_count=row_count, result=result)

    async def recent_events(self, limit: int | None = None) -> QueryRunResult:
        """Fetch the newest events of the application, without touching the conversation."""
        try:
            result = await self._query_client.get_recent_events(limit)
        except InvestigatorError as e:
            logger.warning("Recent events query failed: %s", e)
            return QueryRunResult(success=False, error=str(e))
        return QueryRunResult(
            success=True,
            data=format_compact(result),
            row_count=get_row_count(result),
            result=result,
        )

    def clear_context(self) -> None:
        """Start a fresh conversation (reloading the system prompt) with no session."""
        self._chat_session = ChatSession(self._transport, load_investigator_prompt(self._store.settings))
        self._current_session_id = None
        self._session_data = None
        self._event_count = 0
        logger.info("Conversation context cleared")
