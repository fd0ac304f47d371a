"""
Shared fixtures for batch engine tests.
"""

import pytest

from src.api.schemas import CreateMemoryRequest
from src.core.batch import BatchMemoryService
from src.core.config import ValidationOptions
from src.core.progress import ProgressTracker
from src.core.store import MemoryStore
from src.core.validation import MemoryValidator


@pytest.fixture
def db_path(tmp_path):
    """Isolated SQLite file per test."""
    return str(tmp_path / "memory_test.db")


@pytest.fixture
def store(db_path):
    return MemoryStore(db_path)


@pytest.fixture
def options():
    """Deterministic validation options, independent of the environment."""
    return ValidationOptions(
        default_embedding_model="default",
        enforce_normalization=False,
        validate_suspicious_content=True,
        validate_embedding_quality=False,
        max_content_size_kb=10,
        max_metadata_size_kb=5,
        max_project_id_length=200,
    )


@pytest.fixture
def validator(options):
    return MemoryValidator(options)


@pytest.fixture
def tracker():
    """Fresh progress tracker so tests never share in-flight entries."""
    return ProgressTracker()


@pytest.fixture
def service(store, validator, tracker):
    return BatchMemoryService(store, validator=validator, tracker=tracker)


def make_item(index=0, **overrides):
    """Build a valid create payload, overriding selected fields."""
    data = {
        "project_id": "proj-alpha",
        "content": f"Use repository pattern for data access ({index})",
        "type": "architectural_decision",
        "metadata": {"source": "review", "sequence": str(index)},
    }
    data.update(overrides)
    return CreateMemoryRequest(**data)
