# conftest.py

import os
import tempfile
import uuid

import pytest

# Set testing environment BEFORE importing app so the module-level app uses TestingConfig
os.environ["FLASK_ENV"] = "testing"

from app import create_app  # noqa: E402
from artwork_app.models import Artist, Artwork, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create a Flask application backed by its own temporary SQLite file."""
    temp_dir = tempfile.mkdtemp(prefix="artwork_import_")
    temp_db = os.path.join(temp_dir, f"test_{uuid.uuid4().hex[:8]}.db")

    flask_app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{temp_db}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "WARNING",
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_MAX_WORKERS": 1,
            "IMPORTER_SURVIVORSHIP_PROFILE_PATH": None,
            "CELERY_SQLITE_PATH": os.path.join(temp_dir, "celery.sqlite"),
        }
    )

    try:
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            yield flask_app
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
    finally:
        for name in os.listdir(temp_dir):
            try:
                os.unlink(os.path.join(temp_dir, name))
            except OSError:
                pass
        try:
            os.rmdir(temp_dir)
        except OSError:
            pass


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def make_artist():
    """Factory persisting an artist and returning its id."""

    from artwork_app.importer.pipeline.normalize import canonical_key

    def _make(name, *, aliases=(), source_url=None):
        artist = Artist(
            canonical_name=name,
            canonical_key=canonical_key(name),
            aliases=list(aliases),
            source_url=source_url,
        )
        db.session.add(artist)
        db.session.commit()
        return artist.id

    return _make


@pytest.fixture
def make_artwork():
    """Factory persisting an artwork (optionally with artists and an external id) and returning its id."""

    from artwork_app.models import ExternalIdMap

    def _make(title, lat, lon, *, tags=None, description=None, artist_ids=(), external=None, source_url=None):
        artwork = Artwork(
            title=title,
            lat=lat,
            lon=lon,
            tags=dict(tags or {}),
            description=description,
            source_url=source_url,
        )
        for artist_id in artist_ids:
            artwork.artists.append(db.session.get(Artist, artist_id))
        db.session.add(artwork)
        db.session.flush()
        if external is not None:
            source, external_id = external
            db.session.add(
                ExternalIdMap(
                    entity_type="artwork",
                    entity_id=artwork.id,
                    external_system=source,
                    external_id=external_id,
                )
            )
        db.session.commit()
        return artwork.id

    return _make


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
