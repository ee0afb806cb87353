import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure project root is on sys.path for `import pulsecheck.*`
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Defaults read by pulsecheck.config at import time: in-memory DB, throwaway
# directories, mock providers, no background scheduler.
_TMP = tempfile.mkdtemp(prefix="pulsecheck-tests-")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUDIO_DIR", os.path.join(_TMP, "audio"))
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("AI_PROVIDER", "mock")
os.environ.setdefault("CLEANUP_SCHEDULER_ENABLED", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from pulsecheck.db import Database  # noqa: E402


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def audio_file(tmp_path):
    """A small fake WAV upload on disk."""
    p = tmp_path / "checkin.wav"
    p.write_bytes(b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x01" * 64)
    return p
