import os
from pathlib import Path

import pytest

from agentsmith.config import get_settings
from agentsmith.db.migrations.runner import run_migrations


@pytest.fixture(autouse=True)
def test_env(tmp_path: Path):
    db = tmp_path / "test.db"
    os.environ["APP_ENV"] = "dev"
    os.environ["APP_DB"] = str(db)
    os.environ["WEB_AUTH_SETUP_PASSWORD"] = "secret"
    os.environ["BUILD_PACING_SECONDS"] = "0"
    os.environ["RATE_LIMIT_PIPELINE_PER_MINUTE"] = "10000"
    os.environ["PLANNER_BASE_URL"] = "http://planner.test/v1"
    os.environ["PLANNER_API_KEY"] = "test-key"
    get_settings.cache_clear()
    run_migrations()
    yield
    get_settings.cache_clear()
