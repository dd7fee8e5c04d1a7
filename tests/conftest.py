"""
Pytest configuration and fixtures for tracker tests.

Every test gets its own in-memory SQLite database.
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))
os.environ.setdefault("LOG_TO_FILE", "false")

from tracker.database import create_db_engine, init_db, make_session_factory
from tracker.entity_resolution import EntityResolver, ResolverConfig
from tracker.models import Provider, ProviderAlias
from tracker.normalize import normalize, normalize_license, normalize_zip


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def resolver(db):
    """Resolver with the documented default thresholds."""
    return EntityResolver(db, ResolverConfig())


@pytest.fixture
def make_provider(db):
    """Factory for committed canonical providers."""

    def _make(name, city=None, zip=None, license=None, aliases=(), **extra):
        provider = Provider(
            canonical_name=normalize(name),
            name_display=name,
            city=city,
            zip=zip,
            zip5=normalize_zip(zip) or None,
            license_number=normalize_license(license) or None,
            **extra,
        )
        for alias in aliases:
            provider.aliases.append(ProviderAlias(alias_name=alias, alias_normalized=normalize(alias)))
        db.add(provider)
        db.commit()
        return provider

    return _make
