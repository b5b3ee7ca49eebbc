import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..errors import ConfigurationError, QueryExecutionError
from ..models import QueryResponse, TelemetryResult
from ..settings import SettingsStore

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.applicationinsights.io/v1"


def build_session_events_query(session_id: str, time_range: str = "7d") -> str:
    """KQL for every custom event of one session, oldest first.

    The session id and time range are spliced in verbatim.
    """
    return (
        "customEvents\n"
        f"| where timestamp > ago({time_range})\n"
        f'| where session_Id == "{session_id}"\n'
        "| project timestamp, name, session_Id, customDimensions, customMeasurements\n"
        "| order by timestamp asc"
    )


def build_recent_events_query(limit: int = 50, time_range: str = "1d") -> str:
    """KQL for the newest ``limit`` custom events in the window."""
    return (
        "customEvents\n"
        f"| where timestamp > ago({time_range})\n"
        "| project timestamp, name, session_Id, customDimensions\n"
        "| order by timestamp desc\n"
        f"| take {limit}"
    )


class AppInsightsClient:
    """Runs KQL against the Application Insights REST query API."""

    def __init__(
        self,
        store: SettingsStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._transport = transport

    def _resolve_target(self, app_id: str | None) -> tuple[str, str]:
        settings = self._store.settings
        api_key = settings.app_insights_api_key
        if not api_key:
            raise ConfigurationError(
                'App Insights API key not configured. Use "config api-key <key>" to set it.',
                setting="app_insights_api_key",
            )
        target = app_id or settings.current_app_id
        if not target:
            raise ConfigurationError(
                'No App Insights application selected. Use "appinsight <app-id>" first.',
                setting="current_app_id",
            )
        return api_key, target

    async def execute_query(self, query: str, app_id: str | None = None) -> TelemetryResult:
        """Execute ``query`` against ``app_id`` (or the configured application).

        Args:
            query: KQL text, sent as-is.
            app_id: Application id overriding the configured one.

        Returns:
            TelemetryResult: columns and rows of the first result table.

        Raises:
            ConfigurationError: API key or application id is missing.
            QueryExecutionError: the backend answered with a non-success
                status, could not be reached, or sent an unexpected payload.
        """
        api_key, target = self._resolve_target(app_id)
        url = f"{API_BASE_URL}/apps/{target}/query"
        logger.debug("Executing query against app %s: %s", target, query)

        timeout = self._store.settings.request_timeout_seconds
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(
                    url,
                    json={"query": query},
                    headers={
                        "Content-Type": "application/json",
                        "x-api-key": api_key,
                    },
                )
        except httpx.HTTPError as e:
            logger.warning("Query request to app %s failed: %s", target, e)
            raise QueryExecutionError(None, str(e)) from e

        if not response.is_success:
            logger.warning("Query rejected with status %s", response.status_code)
            raise QueryExecutionError(response.status_code, response.text)

        try:
            payload: Any = response.json()
            parsed = QueryResponse.model_validate(payload)
        except (ValueError, ValidationError) as e:
            logger.warning("Unexpected query response payload: %s", e)
            raise QueryExecutionError(response.status_code, f"Invalid response payload: {e}") from e

        result = TelemetryResult.from_response(parsed)
        logger.info("Query returned %d row(s)", len(result.rows))
        return result

    async def get_session_events(
        self, session_id: str, time_range: str | None = None
    ) -> TelemetryResult:
        time_range = time_range or self._store.settings.session_time_range
        return await self.execute_query(build_session_events_query(session_id, time_range))

    async def get_recent_events(
        self, limit: int | None = None, time_range: str | None = None
    ) -> TelemetryResult:
        settings = self._store.settings
        query = build_recent_events_query(
            limit or settings.recent_limit,
            time_range or settings.recent_time_range,
        )
        return await self.execute_query(query)
