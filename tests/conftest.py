"""Shared test fixtures and configuration."""

pytest_plugins = [
    "tests.fixtures.api_fixtures",
    "tests.fixtures.data_fixtures",
    "tests.fixtures.env_fixtures",
    "tests.fixtures.mock_fixtures",
]
