import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Configure the environment before any import that might build settings
_test_tmp_dir = tempfile.mkdtemp(prefix="parentauth_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("MAINTENANCE_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from parentauth.service.entropy import SecureRandom  # noqa: E402
from parentauth.service.runtime import reset_runtime_for_tests  # noqa: E402
from parentauth.storage.memory import MemoryStore  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def random_source():
    return SecureRandom()


@pytest.fixture
def memory_store():
    return MemoryStore(persist=False)


@pytest.fixture(autouse=True)
def reset_runtime_state(tmp_path, monkeypatch):
    # Fresh snapshot directory per test so runtime state never leaks between tests
    monkeypatch.setenv("SHARED_FS_ROOT", str(tmp_path / "runtime"))
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()
