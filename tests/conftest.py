from __future__ import annotations

import pytest

from queue_worker.app.config.settings import Settings


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,
        QUEUE_BACKEND="inmemory",
        DEAD_LETTER_BACKEND="inmemory",
        REPOSITORY_BACKEND="inmemory",
        RELAY_URL="",
        MAX_BATCH=10,
        WAIT_TIME_SECONDS=0,
        MAX_RECEIVE_COUNT=5,
        VISIBILITY_TIMEOUT_SECONDS=30,
        INITIAL_BACKOFF_SECONDS=0,
        MAX_BACKOFF_SECONDS=0,
        MAX_CONNECTION_ATTEMPTS=1,
    )
