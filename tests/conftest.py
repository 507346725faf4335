"""Shared fixtures for the calendar test suite.

No test talks to Google: the Calendar v3 resource is a MagicMock whose
request objects return canned payloads from execute().
"""

from unittest.mock import MagicMock, Mock

import pytest

from auth.service_helpers import CalendarClient, clear_service_cache


@pytest.fixture
def mock_service():
    """Calendar v3 resource double; resource methods return the same child mocks."""
    return MagicMock()


@pytest.fixture
def credentials():
    return Mock(valid=True, token="test-token", refresh_token="refresh-token")


@pytest.fixture
def calendar_client(mock_service, credentials):
    return CalendarClient(service=mock_service, credentials=credentials)


@pytest.fixture(autouse=True)
def reset_service_cache():
    clear_service_cache()
    yield
    clear_service_cache()
