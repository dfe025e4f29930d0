import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from repo_reference import RepositoryRef
from stats_config import Settings
from stats_errors import NotFound, TransportFailure

RATE_LIMIT_MIN_REMAINING = 10  # Log a warning when this few requests remain


@dataclass
class RateLimitInfo:
    """GitHub API rate limit information extracted from response headers."""

    limit: int
    remaining: int
    reset_timestamp: int

    @property
    def is_exceeded(self) -> bool:
        return self.remaining == 0

    @property
    def seconds_until_reset(self) -> int:
        return max(0, self.reset_timestamp - int(time.time()))


def parse_rate_limit_headers(response: requests.Response) -> Optional[RateLimitInfo]:
    """Parse rate limit headers from a GitHub API response.

    Args:
        response: The HTTP response from GitHub API

    Returns:
        RateLimitInfo if the headers are present, None otherwise
    """
    headers = response.headers
    try:
        limit = int(headers.get('X-RateLimit-Limit', 0))
        remaining = int(headers.get('X-RateLimit-Remaining', 0))
        reset_timestamp = int(headers.get('X-RateLimit-Reset', 0))
    except (ValueError, TypeError) as e:
        logging.debug(f"Could not parse rate limit headers: {e}")
        return None

    if limit == 0 and reset_timestamp == 0:
        return None
    return RateLimitInfo(limit=limit, remaining=remaining, reset_timestamp=reset_timestamp)


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get('message', 'No error message')
    except (ValueError, AttributeError):
        return 'No error message'


class GitHubAPI:
    """Asynchronous GitHub REST client for pull request and collaborator data.

    Requests go through a ``requests.Session`` on a worker thread so callers
    on the event loop are only suspended at network boundaries.
    """

    def __init__(self, token: Optional[str] = None, settings: Optional[Settings] = None,
                 session: Optional[requests.Session] = None):
        """Initialize GitHub API client.

        Args:
            token: Optional GitHub API token; without one requests are
                unauthenticated and subject to lower rate limits
            settings: Endpoint and timeout configuration
            session: Optional preconfigured session
        """
        self.settings = settings or Settings()
        self.headers = {
            'Accept': 'application/vnd.github.v3+json',
            'X-GitHub-Api-Version': self.settings.api_version,
        }
        if token:
            self.headers['Authorization'] = f'token {token}'
        self.session = session or requests.Session()
        self.session.headers.update(self.headers)
        self.rate_limit: Optional[RateLimitInfo] = None

    def close(self) -> None:
        self.session.close()

    def _request(self, endpoint: str, params: Optional[Dict] = None) -> requests.Response:
        url = f"{self.settings.base_url}{endpoint}"
        try:
            return self.session.get(url, params=params, timeout=self.settings.request_timeout)
        except requests.RequestException as e:
            raise TransportFailure(f"Request to {endpoint} failed: {e}") from e

    async def _get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        """Make a GET request and decode the JSON body.

        Args:
            endpoint: API endpoint path
            params: Optional query parameters

        Returns:
            Decoded JSON, or None for a 202 Accepted response

        Raises:
            NotFound: On a 404 response
            TransportFailure: On network errors and other non-2xx responses
        """
        response = await asyncio.to_thread(self._request, endpoint, params)
        self._track_rate_limit(response)

        if response.status_code == 202:
            return None
        if response.status_code == 404:
            raise NotFound(f"{endpoint} not found: {_error_message(response)}")
        if response.status_code not in (200, 201):
            message = _error_message(response)
            if self.rate_limit and self.rate_limit.is_exceeded and response.status_code in (403, 429):
                message = f"API rate limit exceeded, resets in {self.rate_limit.seconds_until_reset}s"
            logging.error(f"API request failed: {endpoint} returned {response.status_code}: {message}")
            raise TransportFailure(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise TransportFailure(f"Invalid JSON from {endpoint}: {e}", status_code=response.status_code) from e

    def _track_rate_limit(self, response: requests.Response) -> None:
        info = parse_rate_limit_headers(response)
        if info is None:
            return
        self.rate_limit = info
        if info.remaining <= RATE_LIMIT_MIN_REMAINING:
            logging.warning(
                f"Approaching GitHub API rate limit: {info.remaining} requests remaining, "
                f"resets in {info.seconds_until_reset}s"
            )

    async def list_pull_requests(self, ref: RepositoryRef, page: int, per_page: int) -> List[Dict[str, Any]]:
        """Fetch one page of a repository's pull requests, newest first.

        Args:
            ref: Repository to list
            page: 1-based page number
            per_page: Page size

        Returns:
            Raw pull request objects
        """
        params = {
            'state': 'all',
            'sort': 'created',
            'direction': 'desc',
            'per_page': per_page,
            'page': page,
        }
        return await self._get(f"/repos/{ref.owner}/{ref.repo}/pulls", params) or []

    async def search_pull_requests(self, username: str, page: int, per_page: int) -> List[Dict[str, Any]]:
        """Fetch one page of pull requests authored by a user across repositories.

        Args:
            username: GitHub login of the author
            page: 1-based page number
            per_page: Page size

        Returns:
            Raw search result items
        """
        params = {
            'q': f'author:{username} is:pr',
            'sort': 'created',
            'order': 'desc',
            'per_page': per_page,
            'page': page,
        }
        data = await self._get("/search/issues", params) or {}
        return data.get('items') or []

    async def list_collaborators(self, ref: RepositoryRef) -> List[Dict[str, Any]]:
        params = {'affiliation': 'all', 'per_page': 100}
        return await self._get(f"/repos/{ref.owner}/{ref.repo}/collaborators", params) or []

    async def get_user(self, username: str) -> Dict[str, Any]:
        return await self._get(f"/users/{username}") or {}

    async def contributor_code_stats(self, ref: RepositoryRef) -> List[Dict[str, Any]]:
        """Fetch weekly addition, deletion and commit counts per contributor.

        GitHub answers 202 while it computes the statistics; that is returned
        as an empty list.
        """
        data = await self._get(f"/repos/{ref.owner}/{ref.repo}/stats/contributors")
        if data is None:
            logging.info(f"Contributor statistics for {ref} are still being computed")
            return []
        return data
