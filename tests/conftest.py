import pytest
from fakes import RecordingSleep

from batchgpt.core.config import Settings


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, openai_api_key="test-key", timeout_seconds=5.0)
