import json
import logging
from pathlib import Path
from typing import Any, Dict, Literal

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_PATH = Path.home() / ".appinsight-investigator" / "config.json"


class Settings(BaseSettings):
    """Application configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path = Path("logs")

    app_insights_api_key: str = ""
    current_app_id: str = ""
    current_resource_group: str = ""
    last_session_id: str = ""

    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-5.2"
    llm_max_tokens: int | None = None
    llm_temperature: float | None = None

    # None disables the client timeout entirely
    request_timeout_seconds: float | None = None

    session_time_range: str = "7d"
    recent_time_range: str = "1d"
    recent_limit: int = 50

    investigator_prompt_path: Path = Path("Investigator.md")
    investigator_system_prompt: str = (
        "You are an App Insights investigator agent. You analyze Azure "
        "Application Insights telemetry data to help diagnose issues.\n\n"
        "When given session data and a user complaint, analyze the events to "
        "identify:\n"
        "1. The sequence of operations\n"
        "2. Any errors or failures\n"
        "3. Performance issues (slow operations)\n"
        "4. Missing or unexpected events\n\n"
        "Provide clear, actionable insights based on the telemetry data."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="INVESTIGATOR_",
        extra="ignore",
    )


# Settings the operator may change at runtime and that are written to disk.
PERSISTED_KEYS = (
    "app_insights_api_key",
    "llm_api_key",
    "llm_base_url",
    "llm_model",
    "current_app_id",
    "current_resource_group",
    "last_session_id",
)


class SettingsStore:
    """Persisted key/value settings overlaid on environment configuration.

    Values written with :meth:`set` are stored as JSON at ``path`` and win
    over ``INVESTIGATOR_*`` environment variables and ``.env`` entries. A
    store created with ``path=None`` keeps its values in memory only.
    """

    def __init__(self, path: Path | None = DEFAULT_CONFIG_PATH) -> None:
        self._path = path
        self._values: Dict[str, Any] = self._read()
        self._settings = self._build()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def settings(self) -> Settings:
        """Return the current settings snapshot."""
        return self._settings

    def _read(self) -> Dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable config file %s: %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring config file %s: expected a JSON object", self._path)
            return {}
        return {k: v for k, v in data.items() if k in PERSISTED_KEYS}

    def _write(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(self._values, indent=2), encoding="utf-8")

    def _build(self) -> Settings:
        try:
            return Settings(**self._values)
        except ValidationError as e:
            invalid = {err["loc"][0] for err in e.errors() if err["loc"]}
            dropped = [k for k in self._values if k in invalid]
            if not dropped:
                raise
            logger.warning("Ignoring invalid stored setting(s) %s: %s", ", ".join(dropped), e)
            self._values = {k: v for k, v in self._values.items() if k not in invalid}
            return Settings(**self._values)

    def get(self, name: str) -> Any:
        """Return the current value of setting ``name``."""
        if name not in Settings.model_fields:
            raise ConfigurationError(f"Unknown setting: {name}", setting=name)
        return getattr(self._settings, name)

    def has(self, name: str) -> bool:
        """Return True when setting ``name`` holds a non-empty value."""
        value = self.get(name)
        return bool(value and str(value).strip())

    def set(self, name: str, value: str) -> None:
        """Store ``value`` under ``name`` and persist it immediately."""
        if name not in PERSISTED_KEYS:
            raise ConfigurationError(f"Setting cannot be changed: {name}", setting=name)
        self._values[name] = value
        self._write()
        self._settings = self._build()
        logger.info("Setting %s updated", name)

    def clear(self) -> None:
        """Wipe all stored settings back to their defaults."""
        self._values = {}
        self._write()
        self._settings = self._build()
        logger.info("Stored settings cleared")
