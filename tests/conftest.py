"""
Pytest configuration and shared fixtures for contributor statistics tests.
"""

import pytest

from contributor_stats import ContributorStatsService
from fakes import FakeGitHubAPI
from stats_config import Settings


@pytest.fixture
def fake_api():
    return FakeGitHubAPI()


@pytest.fixture
def make_service():
    """Build a service wired to a fake API and default settings."""
    def _make(api, **kwargs):
        kwargs.setdefault('settings', Settings())
        return ContributorStatsService(
            token_provider=lambda: None,
            api_factory=lambda token, settings: api,
            **kwargs,
        )
    return _make
