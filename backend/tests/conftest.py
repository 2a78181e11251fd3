import pytest

from ghostwire.config import Settings
from ghostwire.hub import Hub


class FakeConnection:
    """Stands in for a WebSocket: records every JSON frame sent to it."""

    def __init__(self, name: str = "", fail: bool = False):
        self.name = name
        self.fail = fail
        self.frames = []

    async def send_json(self, frame):
        if self.fail:
            raise RuntimeError(f"{self.name or 'connection'} is closed")
        self.frames.append(frame)

    def of(self, action):
        return [f for f in self.frames if f["action"] == action]

    def __repr__(self):
        return f"<FakeConnection {self.name}>"


@pytest.fixture
def make_conn():
    return FakeConnection


@pytest.fixture
def settings(tmp_path):
    return Settings(DATA_DIR=tmp_path, STORE_LOCK_TIMEOUT=2.0, DEBUG_LOG_PATH=None)


@pytest.fixture
def hub(settings):
    return Hub(settings)
