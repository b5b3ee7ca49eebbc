from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Tuple

from pydantic import BaseModel, model_validator

Role = Literal["system", "user", "assistant"]


@dataclass
class Message:
    """One role-tagged entry of the conversation log."""

    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class QueryColumn(BaseModel):
    name: str
    type: str | None = None


class QueryTable(BaseModel):
    """A table as returned by the App Insights query API."""

    name: str | None = None
    columns: List[QueryColumn] = []
    rows: List[List[Any]] = []

    @model_validator(mode="after")
    def _rows_match_columns(self) -> "QueryTable":
        width = len(self.columns)
        for i, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"row {i} has {len(row)} cells but the table has {width} columns"
                )
        return self


class QueryResponse(BaseModel):
    tables: List[QueryTable] = []


@dataclass
class TelemetryResult:
    """Columns and rows of the first table of a query response."""

    columns: List[str] = field(default_factory=list)
    rows: List[Tuple[Any, ...]] = field(default_factory=list)
    has_table: bool = True

    @classmethod
    def from_response(cls, response: QueryResponse) -> "TelemetryResult":
        if not response.tables:
            return cls(has_table=False)
        table = response.tables[0]
        return cls(
            columns=[c.name for c in table.columns],
            rows=[tuple(r) for r in table.rows],
        )

    @property
    def records(self) -> List[Dict[str, Any]]:
        """Rows as column-name keyed dicts, in row order."""
        return [dict(zip(self.columns, row)) for row in self.rows]


@dataclass
class SessionLoadResult:
    """Outcome of loading a session's telemetry into the conversation."""

    success: bool
    event_count: int = 0
    error: str | None = None


@dataclass
class QueryRunResult:
    """Outcome of a direct (non-conversational) query."""

    success: bool
    data: str = ""
    row_count: int = 0
    result: TelemetryResult | None = None
    error: str | None = None
