"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Минимальные переменные окружения до импорта приложения
os.environ.setdefault("ENV", "test")
os.environ.setdefault("GOOGLE_SHEETS_ID", "test-sheet-id")
os.environ.setdefault("GOOGLE_SHEETS_API_KEY", "test-api-key")
os.environ.setdefault("GOOGLE_APPS_SCRIPT_URL", "https://script.example.test/macros/s/deploy/exec")
os.environ.setdefault("BOT_TOKEN", "123456789:ABCdefGHIjklMNOpqrsTUVwxyz123456789")
os.environ.setdefault("LOCAL_STORE_URL", "sqlite+aiosqlite:///:memory:")

# Добавить корень проекта в PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
import pytest_asyncio

from backend.app.core.config_core import Settings
from backend.app.core.database_core import create_engine_for, create_session_factory, init_models
from backend.app.services.local_store import LocalKeyValueStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENV="test",
        GOOGLE_SHEETS_ID="sheet-123",
        GOOGLE_SHEETS_API_KEY="key-abc",
        GOOGLE_APPS_SCRIPT_URL="https://script.example.test/exec",
        TELEGRAM_BOT_TOKEN="123456789:ABCdefGHIjklMNOpqrsTUVwxyz123456789",
    )


@pytest_asyncio.fixture
async def local_store(tmp_path):
    """LocalKeyValueStore поверх временного SQLite-файла."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}")
    await init_models(engine)
    yield LocalKeyValueStore(create_session_factory(engine))
    await engine.dispose()
