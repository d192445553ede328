"""
Pytest configuration.

Ensures the src directory is on the path for imports, and provides a fixed
clock for time-dependent tests.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src to path so imports work
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


@pytest.fixture
def t0():
    """A fixed UTC instant. Tests advance it with timedelta."""
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
