"""
Pytest configuration and fixtures.
"""
import tempfile
from pathlib import Path
from typing import Generator, List

import pytest
from sqlalchemy.orm import sessionmaker

from finlink.database import Base, create_db_engine, create_session_factory, init_db
from finlink.finlink_engine.models import TaxonomyConcept
from finlink.services.stores import InMemoryDocumentStore, InMemoryResultStore
from finlink.services.taxonomy_service import TaxonomyService
from tests.fakes import RecordingSleep


@pytest.fixture
def sleep() -> RecordingSleep:
    """Recording no-op sleep."""
    return RecordingSleep()


@pytest.fixture(scope="session")
def taxonomy_service() -> TaxonomyService:
    """Taxonomy loaded from the packaged YAML."""
    return TaxonomyService()


@pytest.fixture
def taxonomy(taxonomy_service: TaxonomyService) -> List[TaxonomyConcept]:
    """Concept list."""
    return taxonomy_service.list_concepts()


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def result_store() -> InMemoryResultStore:
    return InMemoryResultStore()


@pytest.fixture
def session_factory() -> Generator[sessionmaker, None, None]:
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite://")
    init_db(engine)
    try:
        yield create_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
