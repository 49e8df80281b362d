"""Pytest configuration for slink tests."""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add src/ to path for src-layout imports
_SRC = Path(__file__).parent.parent / 'src'
if str(_SRC) not in sys.path:
    sys.path.insert(0, str(_SRC))

import pytest

from slink.config import SlinkConfig
from slink.logging import configure_logging
from slink.model import InMemoryRecordStore
from slink.shares import ShareLifecycle
from slink.storage import LocalStorage

SECRET = 'test-secret-0123456789abcdef'


class FixedClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 2, 13, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def base_dir(tmp_path):
    """Create a temporary base directory for published files."""
    base = tmp_path / 'www'
    base.mkdir()
    return base


@pytest.fixture
def config(base_dir, tmp_path):
    return SlinkConfig(
        base_url='https://files.example.com',
        base_dir=str(base_dir),
        db_path=str(tmp_path / 'data' / 'shares.db'),
        hash_secret=SECRET,
        web_user='',
        web_group='',
        hash_bytes=7,
    )


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def storage(base_dir):
    return LocalStorage(base_dir)


@pytest.fixture
def lifecycle(store, config, clock):
    return ShareLifecycle(store, config, clock=clock)


@pytest.fixture
def config_file(config, tmp_path):
    """Write ``config`` to disk with owner-only permissions."""
    return config.write(tmp_path / 'conf' / 'slink.conf')


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.config and ~/.local/share."""
    monkeypatch.delenv('SLINK_CONFIG', raising=False)
    monkeypatch.setenv('XDG_CONFIG_HOME', str(tmp_path / 'xdg-config'))
    monkeypatch.setenv('XDG_DATA_HOME', str(tmp_path / 'xdg-data'))


@pytest.fixture(autouse=True)
def _logging():
    """Bind log output to this test's captured stderr."""
    configure_logging(level='WARNING', force=True)
