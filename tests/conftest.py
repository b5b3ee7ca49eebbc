import os
import sys
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from appinsight_investigator.settings import SettingsStore  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run every test in an empty directory with no INVESTIGATOR_* variables."""
    for name in list(os.environ):
        if name.startswith("INVESTIGATOR_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def store(tmp_path: Path) -> SettingsStore:
    """Settings store with both API keys and an application id configured."""
    s = SettingsStore(tmp_path / "config.json")
    s.set("app_insights_api_key", "ai-key")
    s.set("llm_api_key", "llm-key")
    s.set("current_app_id", "app-123")
    return s


@pytest.fixture
def empty_store(tmp_path: Path) -> SettingsStore:
    """Settings store with nothing configured."""
    return SettingsStore(tmp_path / "empty.json")
