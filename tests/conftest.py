"""Root conftest.py for test configuration.

Ensures local src/ directory takes priority over any installed packages.
"""

import sys
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

# Insert local src directory at the beginning of sys.path
# This ensures that the local reindexer package is used, not any installed one
_src_dir = Path(__file__).parent.parent / "src"
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

from reindexer.db.database import Database  # noqa: E402
from reindexer.entities.registry import EntityRegistry  # noqa: E402
from tests.models import ALL_MODELS  # noqa: E402


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def model_registry() -> EntityRegistry:
    """Fresh registry holding every shared SQLModel entity."""
    registry = EntityRegistry()
    for model in ALL_MODELS:
        registry.register(model)
    return registry


@pytest.fixture
def database(temp_dir: Path) -> Generator[Database, None, None]:
    """SQLite file store with every shared table created."""
    db = Database(temp_dir / "store.db")
    db.create_all()
    yield db
    db.dispose()
