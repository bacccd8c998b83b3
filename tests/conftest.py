import pytest

from thoughtbot.store import RecordStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store() -> RecordStore:
    return RecordStore()
