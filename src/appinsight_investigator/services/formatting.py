"""Text renderings of telemetry results for the console and for the model."""

import json

from ..models import TelemetryResult

RULE = "─"


def get_row_count(result: TelemetryResult | None) -> int:
    if result is None or not result.has_table:
        return 0
    return len(result.rows)


def format_verbose(result: TelemetryResult) -> str:
    """Render every record as indented JSON between rule lines, for people."""
    if not result.has_table or not result.columns:
        return "No results found."
    if not result.rows:
        return "Query returned no rows."

    lines = [f"Found {len(result.rows)} row(s)", RULE * 60]
    for record in result.records:
        lines.append(json.dumps(record, indent=2, ensure_ascii=False, default=str))
        lines.append(RULE * 40)
    return "\n".join(lines) + "\n"


def format_compact(result: TelemetryResult) -> str:
    """Render all records as a single JSON array, for re-injection as context."""
    return json.dumps(result.records, indent=2, ensure_ascii=False, default=str)
