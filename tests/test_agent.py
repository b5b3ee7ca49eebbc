from pathlib import Path
from typing import Any, List
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from appinsight_investigator.agent import InvestigatorAgent, load_investigator_prompt
from appinsight_investigator.agent.agent import FOLLOW_UP_PROMPT, NO_SESSION_MESSAGE
from appinsight_investigator.errors import LlmRequestError, QueryExecutionError
from appinsight_investigator.models import TelemetryResult
from appinsight_investigator.services.appinsights import AppInsightsClient
from appinsight_investigator.services.llm import ChatTransport
from appinsight_investigator.settings import Settings, SettingsStore

TRIGGERING_REPLY = (
    "The slowdown starts after checkout. Let me query the durations:\n"
    "```kql\ncustomEvents | where name == \"Checkout\" | project timestamp, name\n```"
)


def _rows(n: int) -> TelemetryResult:
    return TelemetryResult(
        columns=["timestamp", "name"],
        rows=[(f"2024-01-01T00:00:0{i}Z", f"Event{i}") for i in range(n)],
    )


def _session_payload(n: int) -> dict:
    return {
        "tables": [
            {
                "name": "PrimaryResult",
                "columns": [{"name": "timestamp"}, {"name": "name"}],
                "rows": [[f"t{i}", f"Event{i}"] for i in range(n)],
            }
        ]
    }


@pytest.fixture
def query_client() -> MagicMock:
    m = MagicMock(spec=AppInsightsClient)
    m.get_session_events = AsyncMock(return_value=_rows(3))
    m.get_recent_events = AsyncMock(return_value=_rows(2))
    m.execute_query = AsyncMock(return_value=_rows(2))
    return m


@pytest.fixture
def transport() -> MagicMock:
    m = MagicMock(spec=ChatTransport)
    m.complete = AsyncMock(return_value="plain answer")
    return m


@pytest.fixture
def agent(store: SettingsStore, query_client: MagicMock, transport: MagicMock) -> InvestigatorAgent:
    return InvestigatorAgent(store, query_client=query_client, transport=transport)


def test_prompt_falls_back_to_builtin(tmp_path: Path) -> None:
    settings = Settings(investigator_prompt_path=tmp_path / "missing.md")
    assert load_investigator_prompt(settings) == settings.investigator_system_prompt


def test_prompt_read_from_file(tmp_path: Path) -> None:
    path = tmp_path / "Investigator.md"
    path.write_text("custom prompt", encoding="utf-8")
    assert load_investigator_prompt(Settings(investigator_prompt_path=path)) == "custom prompt"


def test_prompt_directory_is_not_a_file(tmp_path: Path) -> None:
    settings = Settings(investigator_prompt_path=tmp_path)
    assert load_investigator_prompt(settings) == settings.investigator_system_prompt


def test_agent_uses_prompt_file_from_working_directory(
    isolated_env: Path, store: SettingsStore
) -> None:
    (isolated_env / "Investigator.md").write_text("from file", encoding="utf-8")
    agent = InvestigatorAgent(store, query_client=MagicMock(), transport=MagicMock())
    assert agent.chat_session.history[0].content == "from file"


@pytest.mark.asyncio
async def test_set_session_success(agent: InvestigatorAgent, query_client: MagicMock) -> None:
    result = await agent.set_session("abc123")

    assert result.success is True
    assert result.event_count == 3
    assert agent.current_session_id == "abc123"
    assert agent.event_count == 3
    assert agent.session_data is not None
    query_client.get_session_events.assert_awaited_once_with("abc123")
    context = agent.chat_session.history[-1]
    assert context.role == "user"
    assert context.content.startswith("[Context]: Session ID: abc123\nSession Data (3 events):\n[")


@pytest.mark.asyncio
async def test_set_session_failure_keeps_state(
    agent: InvestigatorAgent, query_client: MagicMock
) -> None:
    await agent.set_session("first")
    query_client.get_session_events.side_effect = QueryExecutionError(404, "not found")
    size = len(agent.chat_session)

    result = await agent.set_session("second")

    assert result.success is False
    assert "404" in result.error
    assert agent.current_session_id == "first"
    assert agent.event_count == 3
    assert len(agent.chat_session) == size


@pytest.mark.asyncio
async def test_loading_another_session_replaces_state(
    agent: InvestigatorAgent, query_client: MagicMock
) -> None:
    await agent.set_session("first")
    query_client.get_session_events.return_value = _rows(1)
    await agent.set_session("second")
    assert agent.current_session_id == "second"
    assert agent.event_count == 1


@pytest.mark.asyncio
async def test_investigate_requires_session(agent: InvestigatorAgent, transport: MagicMock) -> None:
    assert await agent.investigate("app is slow") == NO_SESSION_MESSAGE
    transport.complete.assert_not_awaited()


@pytest.mark.asyncio
async def test_investigate_without_query(agent: InvestigatorAgent, query_client: MagicMock) -> None:
    await agent.set_session("abc123")
    before = len(agent.chat_session)

    reply = await agent.investigate("app is slow")

    assert reply == "plain answer"
    assert len(agent.chat_session) == before + 2
    prompt = agent.chat_session.history[-2].content
    assert 'User complaint: "app is slow"' in prompt
    assert "code block" in prompt
    query_client.execute_query.assert_not_awaited()


@pytest.mark.asyncio
async def test_investigate_runs_requested_query(
    agent: InvestigatorAgent, query_client: MagicMock, transport: MagicMock
) -> None:
    """A triggering reply runs the query, injects it and asks for a follow-up."""
    transport.complete = AsyncMock(side_effect=[TRIGGERING_REPLY, "follow-up analysis"])
    await agent.set_session("abc123")
    before = len(agent.chat_session)

    reply = await agent.investigate("app is slow")

    assert reply.startswith(TRIGGERING_REPLY)
    assert "[Query Results: 2 row(s)]" in reply
    assert reply.endswith("follow-up analysis")
    query_client.execute_query.assert_awaited_once_with(
        'customEvents | where name == "Checkout" | project timestamp, name'
    )

    history = agent.chat_session.history
    assert len(history) == before + 5
    added = history[before:]
    assert [m.role for m in added] == ["user", "assistant", "user", "user", "assistant"]
    assert added[2].content.startswith("[Context]: Query result (2 rows):")
    assert added[3].content == FOLLOW_UP_PROMPT
    assert added[4].content == "follow-up analysis"


@pytest.mark.asyncio
async def test_query_listener_sees_query(
    store: SettingsStore, query_client: MagicMock, transport: MagicMock
) -> None:
    seen: List[str] = []
    transport.complete = AsyncMock(side_effect=[TRIGGERING_REPLY, "done"])
    agent = InvestigatorAgent(
        store, query_client=query_client, transport=transport, query_listener=seen.append
    )
    await agent.chat("why?")
    assert seen == ['customEvents | where name == "Checkout" | project timestamp, name']


@pytest.mark.asyncio
async def test_failed_requested_query_is_reported_inline(
    agent: InvestigatorAgent, query_client: MagicMock, transport: MagicMock
) -> None:
    transport.complete = AsyncMock(return_value=TRIGGERING_REPLY)
    query_client.execute_query.side_effect = QueryExecutionError(400, "syntax error")
    before = len(agent.chat_session)

    reply = await agent.chat("what happened?")

    assert reply == f"{TRIGGERING_REPLY}\n\n[Query execution failed: Query failed (400): syntax error]"
    assert len(agent.chat_session) == before + 2
    assert transport.complete.await_count == 1


@pytest.mark.asyncio
async def test_custom_detector_is_used(
    store: SettingsStore, query_client: MagicMock, transport: MagicMock
) -> None:
    transport.complete = AsyncMock(side_effect=["anything", "analysis"])
    agent = InvestigatorAgent(
        store,
        query_client=query_client,
        transport=transport,
        intent_detector=lambda reply: "customEvents | take 1",
    )
    reply = await agent.chat("go")
    query_client.execute_query.assert_awaited_once_with("customEvents | take 1")
    assert reply.endswith("analysis")


@pytest.mark.asyncio
async def test_chat_error_is_returned_as_text(agent: InvestigatorAgent, transport: MagicMock) -> None:
    transport.complete.side_effect = LlmRequestError(500, "boom")
    reply = await agent.chat("hello")
    assert reply == "Error: LLM request failed (500): boom"


@pytest.mark.asyncio
async def test_investigate_error_is_returned_as_text(
    agent: InvestigatorAgent, transport: MagicMock
) -> None:
    await agent.set_session("abc123")
    transport.complete.side_effect = LlmRequestError(429, "slow down")
    reply = await agent.investigate("app is slow")
    assert reply.startswith("Error during investigation:")
    assert "429" in reply


@pytest.mark.asyncio
async def test_execute_custom_query(agent: InvestigatorAgent) -> None:
    result = await agent.execute_custom_query("customEvents | take 2")
    assert result.success is True
    assert result.row_count == 2
    assert result.result is not None
    assert result.data.startswith("[")
    assert agent.chat_session.history[-1].content.startswith("[Context]: Custom query result (2 rows):")


@pytest.mark.asyncio
async def test_execute_custom_query_failure(agent: InvestigatorAgent, query_client: MagicMock) -> None:
    query_client.execute_query.side_effect = QueryExecutionError(None, "timed out")
    before = len(agent.chat_session)
    result = await agent.execute_custom_query("customEvents")
    assert result.success is False
    assert "timed out" in result.error
    assert len(agent.chat_session) == before


@pytest.mark.asyncio
async def test_recent_events(agent: InvestigatorAgent, query_client: MagicMock) -> None:
    before = len(agent.chat_session)
    result = await agent.recent_events(10)
    assert result.success is True
    assert result.row_count == 2
    query_client.get_recent_events.assert_awaited_once_with(10)
    assert len(agent.chat_session) == before


@pytest.mark.asyncio
async def test_clear_context_resets_everything(agent: InvestigatorAgent) -> None:
    await agent.set_session("abc123")
    await agent.chat("hello")
    agent.clear_context()
    assert agent.current_session_id is None
    assert agent.event_count == 0
    assert agent.session_data is None
    history = agent.chat_session.history
    assert len(history) == 1
    assert history[0].role == "system"


# End-to-end through the real clients, with the backends behind httpx.MockTransport.


def _real_agent(store: SettingsStore, telemetry: Any, llm: Any) -> InvestigatorAgent:
    return InvestigatorAgent(
        store,
        query_client=AppInsightsClient(store, transport=httpx.MockTransport(telemetry)),
        transport=ChatTransport(
            store, http_client=httpx.AsyncClient(transport=httpx.MockTransport(llm))
        ),
    )


def _completion(content: str) -> dict:
    return {
        "id": "chatcmpl-1",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-5.2",
        "choices": [
            {"index": 0, "finish_reason": "stop", "message": {"role": "assistant", "content": content}}
        ],
    }


@pytest.mark.asyncio
async def test_end_to_end_session_load(store: SettingsStore) -> None:
    def telemetry(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_session_payload(3))

    def llm(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no LLM call expected")

    agent = _real_agent(store, telemetry, llm)
    assert agent.current_session_id is None

    result = await agent.set_session("abc123")

    assert result.success is True
    assert result.event_count == 3
    assert agent.current_session_id == "abc123"


@pytest.mark.asyncio
async def test_end_to_end_session_unauthorized(store: SettingsStore) -> None:
    def telemetry(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid api key")

    def llm(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no LLM call expected")

    agent = _real_agent(store, telemetry, llm)
    result = await agent.set_session("abc123")

    assert result.success is False
    assert "401" in result.error
    assert agent.current_session_id is None


@pytest.mark.asyncio
async def test_end_to_end_investigation_with_query(store: SettingsStore) -> None:
    telemetry_calls: List[str] = []
    replies = iter([TRIGGERING_REPLY, "the checkout event is slow"])

    def telemetry(request: httpx.Request) -> httpx.Response:
        telemetry_calls.append(request.content.decode())
        return httpx.Response(200, json=_session_payload(3 if len(telemetry_calls) == 1 else 4))

    def llm(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion(next(replies)))

    agent = _real_agent(store, telemetry, llm)
    await agent.set_session("abc123")
    before = len(agent.chat_session)

    reply = await agent.investigate("app is slow")

    assert TRIGGERING_REPLY in reply
    assert "[Query Results: 4 row(s)]" in reply
    assert "the checkout event is slow" in reply
    assert len(agent.chat_session) == before + 5
    assert len(telemetry_calls) == 2
    assert agent.event_count == 3


@pytest.mark.asyncio
async def test_missing_llm_key_makes_no_calls(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "config.json")
    store.set("app_insights_api_key", "ai-key")
    store.set("current_app_id", "app-123")
    llm_calls: List[httpx.Request] = []

    def telemetry(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_session_payload(1))

    def llm(request: httpx.Request) -> httpx.Response:
        llm_calls.append(request)
        return httpx.Response(200, json=_completion("unreachable"))

    agent = _real_agent(store, telemetry, llm)
    await agent.set_session("abc123")

    chat_reply = await agent.chat("hello")
    investigate_reply = await agent.investigate("app is slow")

    assert "API key not configured" in chat_reply
    assert "API key not configured" in investigate_reply
    assert llm_calls == []


@pytest.mark.asyncio
async def test_failed_follow_up_keeps_first_reply(
    agent: InvestigatorAgent, query_client: MagicMock, transport: MagicMock
) -> None:
    """A follow-up failure after a requested query still returns the model's first reply."""
    transport.complete = AsyncMock(side_effect=[TRIGGERING_REPLY, LlmRequestError(500, "boom")])

    reply = await agent.chat("hi")

    assert reply.startswith(TRIGGERING_REPLY)
    assert reply.endswith("[Query execution failed: LLM request failed (500): boom]")
    query_client.execute_query.assert_awaited_once()
    assert transport.complete.await_count == 2
