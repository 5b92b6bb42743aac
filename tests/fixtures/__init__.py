"""Organized test fixtures for the export service.

This package provides reusable fixtures organized by category:
- api_fixtures: API client wired to in-memory services, caller headers
- mock_fixtures: Fakes for upstream sources, object storage, audit and clock
- data_fixtures: Sample session and agent rows
- env_fixtures: Environment configuration
"""
