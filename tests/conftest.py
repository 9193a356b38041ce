"""
Global test configuration and fixtures for the storefront trust layer

Every test gets its own temporary SQLite database, a fresh application built
from explicit settings, and an object storage client whose S3 calls go to an
AsyncMock instead of the network.
"""

import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from storefront.auth.users import UserRepository
from storefront.db.init_db import init_database
from storefront.db.session import create_db_engine, create_session_factory
from storefront.main import create_app
from storefront.uploads.storage import ObjectStorageClient
from tests.utils.helpers import FakeClock, RecordingMailer, build_settings


# ============================================================================
# Settings and Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def db_path():
    """Temporary SQLite file for one test"""
    db_fd, path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)
    yield path
    Path(path).unlink(missing_ok=True)


@pytest.fixture(scope="function")
def test_settings(db_path):
    """Settings pointing at the temporary database"""
    return build_settings(db_path)


@pytest.fixture(scope="function")
def session_factory(test_settings):
    engine = create_db_engine(test_settings)
    init_database(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def user_repository(session_factory):
    return UserRepository(session_factory)


@pytest.fixture(scope="function")
def clock():
    return FakeClock()


# ============================================================================
# Object Storage Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def mock_s3():
    """AsyncMock standing in for the aiobotocore S3 client"""
    s3 = AsyncMock()
    s3.put_object.return_value = {"ETag": '"put-etag"'}
    s3.create_multipart_upload.return_value = {"UploadId": "upload-123"}
    s3.upload_part.side_effect = lambda **kwargs: {"ETag": f'"etag-{kwargs["PartNumber"]}"'}
    s3.complete_multipart_upload.return_value = {}
    s3.abort_multipart_upload.return_value = {}
    s3.delete_object.return_value = {}
    s3.delete_objects.return_value = {"Deleted": []}
    return s3


@pytest.fixture(scope="function")
def mock_aio_session(mock_s3):
    """aiobotocore session whose create_client() yields ``mock_s3``"""
    session = MagicMock()
    client_cm = session.create_client.return_value
    client_cm.__aenter__.return_value = mock_s3
    client_cm.__aexit__.return_value = False
    return session


@pytest.fixture(scope="function")
def storage(test_settings, mock_aio_session):
    return ObjectStorageClient(test_settings, session=mock_aio_session)


# ============================================================================
# Application Client Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def mailer():
    return RecordingMailer()


@pytest.fixture(scope="function")
def app(test_settings, storage, mailer):
    """Application with storage swapped for the mocked client and mail recorded"""
    application = create_app(test_settings, configure_logging=False)
    application.state.storage = storage
    application.state.mailer = mailer
    application.state.credentials.mailer = mailer
    yield application
    application.state.engine.dispose()


@pytest.fixture(scope="function")
def client(app):
    """Create FastAPI test client"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture(scope="function")
def anonymous_client(app):
    """Second client sharing the app but not the cookie jar"""
    with TestClient(app) as test_client:
        yield test_client


# ============================================================================
# Test Markers and Configuration
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Add markers based on file location"""
    for item in items:
        path = str(item.fspath)
        if "security" in path:
            item.add_marker(pytest.mark.security)
        if "integration" in path:
            item.add_marker(pytest.mark.integration)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
