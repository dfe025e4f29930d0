"""Time-windowed pagination over GitHub pull request listings.

Both listings are requested sorted by creation time, newest first. A page
whose in-window records are fewer than its raw records has crossed the
window boundary, so every later page is older still and is not requested.
This holds only while the upstream keeps that strict descending order; an
unsorted or ascending listing would be silently truncated.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List

from github_api import GitHubAPI
from progress import NULL_PROGRESS, ProgressReporter
from repo_reference import RepositoryRef
from stats_config import Settings
from stats_errors import NotFound, TransportFailure
from stats_types import (
    PLACEHOLDER_AVATAR,
    UNKNOWN_USER,
    PullRequestAuthor,
    PullRequestRecord,
    parse_timestamp,
)

PageFetcher = Callable[[int, int], Awaitable[List[Dict[str, Any]]]]
Normalizer = Callable[[Dict[str, Any]], PullRequestRecord]


def created_after(item: Dict[str, Any], window_start: datetime) -> bool:
    """Check whether a raw record was created strictly after ``window_start``.

    Records without a parseable creation time count as outside the window.
    """
    created_at = parse_timestamp(item.get('created_at'))
    return created_at is not None and created_at > window_start


def normalize_pull_request(item: Dict[str, Any], ref: RepositoryRef) -> PullRequestRecord:
    """Normalize an item of a repository's pull request listing.

    Args:
        item: Raw pull request object
        ref: Repository the listing belongs to

    Returns:
        Record with fallbacks in place of missing fields
    """
    number = item.get('number', 0)
    user = item.get('user') or {}
    base_repo = (item.get('base') or {}).get('repo') or {}
    return PullRequestRecord(
        number=number,
        title=item.get('title') or f"Pull Request #{number}",
        state=item.get('state') or 'unknown',
        created_at=item.get('created_at') or '',
        merged_at=item.get('merged_at') or None,
        url=item.get('html_url') or '',
        repository_name=ref.full_name,
        repository_url=base_repo.get('url') or item.get('repository_url') or '',
        author=PullRequestAuthor(
            login=user.get('login') or UNKNOWN_USER,
            avatar_url=user.get('avatar_url') or PLACEHOLDER_AVATAR,
        ),
    )


def repository_name_from_url(repository_url: str) -> str:
    """Extract ``owner/repo`` from an API repository URL."""
    if '/repos/' not in repository_url:
        return 'unknown/unknown'
    return repository_url.split('/repos/', 1)[1].strip('/') or 'unknown/unknown'


def normalize_search_item(item: Dict[str, Any], username: str, avatar_url: str) -> PullRequestRecord:
    """Normalize a pull request returned by the issue search endpoint.

    Search results carry the merge time under ``pull_request`` and the author
    is the searched user.
    """
    number = item.get('number', 0)
    repository_url = item.get('repository_url') or ''
    return PullRequestRecord(
        number=number,
        title=item.get('title') or f"Pull Request #{number}",
        state=item.get('state') or 'unknown',
        created_at=item.get('created_at') or '',
        merged_at=(item.get('pull_request') or {}).get('merged_at') or None,
        url=item.get('html_url') or '',
        repository_name=repository_name_from_url(repository_url),
        repository_url=repository_url,
        author=PullRequestAuthor(
            login=username or UNKNOWN_USER,
            avatar_url=avatar_url or PLACEHOLDER_AVATAR,
        ),
    )


async def fetch_windowed(
    fetch_page: PageFetcher,
    normalize: Normalizer,
    window_start: datetime,
    max_pages: int,
    per_page: int,
    progress: ProgressReporter = NULL_PROGRESS,
) -> List[PullRequestRecord]:
    """Walk a paged listing sorted newest first, stopping at the time window.

    Args:
        fetch_page: Coroutine function taking (page, per_page)
        normalize: Converts a raw item into a PullRequestRecord
        window_start: Only records created after this are kept
        max_pages: Hard cap on the number of pages requested
        per_page: Page size

    Returns:
        Records inside the window, newest first. If a page after the first
        fails, the records gathered so far are returned.

    Raises:
        TransportFailure: If the first page fails
        NotFound: If the first page reports a missing entity
    """
    records: List[PullRequestRecord] = []
    for page in range(1, max_pages + 1):
        try:
            items = await fetch_page(page, per_page)
        except (TransportFailure, NotFound) as e:
            if page == 1:
                raise
            logging.warning(f"Error fetching page {page} of pull requests, keeping {len(records)} already fetched: {e}")
            break

        if not items:
            break

        in_window = [item for item in items if created_after(item, window_start)]
        records.extend(normalize(item) for item in in_window)
        progress.report(f"Fetched page {page} of pull requests...")

        if len(in_window) < len(items):
            break
    else:
        logging.info(f"Reached the limit of {max_pages} pages, older pull requests were not fetched")

    return records


async def fetch_repository_pull_requests(
    api: GitHubAPI,
    ref: RepositoryRef,
    window_start: datetime,
    settings: Settings,
    progress: ProgressReporter = NULL_PROGRESS,
) -> List[PullRequestRecord]:
    """Fetch a repository's pull requests created inside the time window."""
    prs = await fetch_windowed(
        lambda page, per_page: api.list_pull_requests(ref, page, per_page),
        lambda item: normalize_pull_request(item, ref),
        window_start,
        max_pages=settings.repo_max_pages,
        per_page=settings.per_page,
        progress=progress,
    )
    logging.info(f"Fetched {len(prs)} pull requests for {ref}")
    return prs


async def fetch_user_pull_requests(
    api: GitHubAPI,
    username: str,
    avatar_url: str,
    window_start: datetime,
    settings: Settings,
    progress: ProgressReporter = NULL_PROGRESS,
) -> List[PullRequestRecord]:
    """Fetch pull requests authored by a user across repositories."""
    prs = await fetch_windowed(
        lambda page, per_page: api.search_pull_requests(username, page, per_page),
        lambda item: normalize_search_item(item, username, avatar_url),
        window_start,
        max_pages=settings.search_max_pages,
        per_page=settings.per_page,
        progress=progress,
    )
    logging.info(f"Fetched {len(prs)} pull requests authored by {username}")
    return prs
