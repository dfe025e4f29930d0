import os
import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

# API Configuration
BASE_URL = "https://api.github.com"
GITHUB_HOST = "github.com"
API_VERSION = "2022-11-28"
REQUEST_TIMEOUT = 30
MAX_PRS_PER_PAGE = 100
REPO_MAX_PAGES = 5  # first 500 PRs of a repository listing
SEARCH_MAX_PAGES = 3  # search is slower and more tightly rate limited

# Cache Configuration (seconds)
GENERAL_CACHE_TTL = 300
MAINTAINER_CACHE_TTL = 3600
COALESCE_GRACE_PERIOD = 5

# Number of a user's most active repositories checked for maintainer status
MAINTAINER_CHECK_TOP_N = 3

TokenProvider = Callable[[], Optional[str]]


@dataclass(frozen=True)
class Settings:
    """Tunable limits for fetching and caching contributor statistics."""

    base_url: str = BASE_URL
    host: str = GITHUB_HOST
    api_version: str = API_VERSION
    request_timeout: float = REQUEST_TIMEOUT
    per_page: int = MAX_PRS_PER_PAGE
    repo_max_pages: int = REPO_MAX_PAGES
    search_max_pages: int = SEARCH_MAX_PAGES
    general_cache_ttl: float = GENERAL_CACHE_TTL
    maintainer_cache_ttl: float = MAINTAINER_CACHE_TTL
    coalesce_grace_period: float = COALESCE_GRACE_PERIOD
    maintainer_check_top_n: int = MAINTAINER_CHECK_TOP_N

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings, applying overrides from environment variables.

        Recognized variables:
            GITHUB_API_URL: Alternate REST API base URL
            CONTRIBUTOR_STATS_CACHE_TTL: Result cache TTL in seconds
            CONTRIBUTOR_STATS_MAINTAINER_TTL: Collaborator cache TTL in seconds

        Returns:
            Settings with any valid overrides applied
        """
        settings = cls()
        base_url = os.environ.get("GITHUB_API_URL")
        if base_url:
            settings = replace(settings, base_url=base_url.rstrip("/"))

        for env_var, attr in (
            ("CONTRIBUTOR_STATS_CACHE_TTL", "general_cache_ttl"),
            ("CONTRIBUTOR_STATS_MAINTAINER_TTL", "maintainer_cache_ttl"),
        ):
            value = os.environ.get(env_var)
            if not value:
                continue
            try:
                seconds = float(value)
            except ValueError:
                logging.warning(f"Ignoring {env_var}={value!r}: not a number")
                continue
            if seconds < 0:
                logging.warning(f"Ignoring {env_var}={value!r}: must not be negative")
                continue
            settings = replace(settings, **{attr: seconds})
        return settings


def env_token_provider() -> Optional[str]:
    """Read the GitHub token from the GITHUB_TOKEN environment variable."""
    return os.environ.get("GITHUB_TOKEN") or None
