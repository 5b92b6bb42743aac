"""Environment and configuration fixtures for tests."""

import os
from unittest.mock import patch

import pytest

from src.exporter.config import reload_settings


@pytest.fixture(autouse=False)
def env_no_auth():
    """Fixture to clear authentication environment variables."""
    with patch.dict(os.environ, {}, clear=True):
        reload_settings()
        yield
    reload_settings()


@pytest.fixture(autouse=False)
def env_with_auth():
    """Fixture to require the API key ``test-key``."""
    with patch.dict(os.environ, {"EXPORTER_KEY": "test-key"}, clear=True):
        reload_settings()
        yield
    reload_settings()


@pytest.fixture(autouse=False)
def env_short_url_ttl():
    """Fixture shortening download URLs to one hour."""
    with patch.dict(os.environ, {"EXPORT_DOWNLOAD_URL_TTL": "3600"}, clear=True):
        reload_settings()
        yield
    reload_settings()
