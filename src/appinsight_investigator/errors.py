"""Exceptions raised by the telemetry and LLM clients.

The agent catches :class:`InvestigatorError` at its public boundary and turns
it into a result object or inline text, so none of these reach the shell loop.
"""


class InvestigatorError(Exception):
    """Base class for all investigator failures."""


class ConfigurationError(InvestigatorError):
    """A required setting (API key, application id) is missing."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


class QueryExecutionError(InvestigatorError):
    """The telemetry backend rejected a query or could not be reached."""

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"Query failed: {body}")
        else:
            super().__init__(f"Query failed ({status_code}): {body}")


class LlmRequestError(InvestigatorError):
    """The chat completion backend returned a non-success response."""

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        if status_code is None:
            super().__init__(f"LLM request failed: {body}")
        else:
            super().__init__(f"LLM request failed ({status_code}): {body}")


class LlmEmptyResponseError(InvestigatorError):
    """The chat completion backend returned no choices."""

    def __init__(self, message: str = "No response from LLM") -> None:
        super().__init__(message)
