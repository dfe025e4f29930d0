import logging
from typing import Any, Dict, FrozenSet, Iterable, Optional

from github_api import GitHubAPI
from github_cache import RequestCoalescer, ResultCache, cache_key
from progress import NULL_PROGRESS, ProgressReporter
from repo_reference import RepositoryRef
from stats_config import MAINTAINER_CACHE_TTL
from stats_errors import ContributorStatsError


def maintainers_from_collaborators(collaborators: Iterable[Dict[str, Any]]) -> FrozenSet[str]:
    """Select collaborators holding push or admin permission.

    Args:
        collaborators: Raw collaborator objects

    Returns:
        Logins of the maintainers
    """
    maintainers = set()
    for collaborator in collaborators:
        permissions = collaborator.get('permissions') or {}
        if permissions.get('push') is True or permissions.get('admin') is True:
            login = collaborator.get('login')
            if login:
                maintainers.add(login)
    return frozenset(maintainers)


class MaintainerResolver:
    """Resolves the set of users with write access to a repository.

    Results are cached for ``ttl`` seconds and concurrent lookups of the same
    repository share a single collaborators request.
    """

    def __init__(
        self,
        cache: ResultCache,
        coalescer: Optional[RequestCoalescer] = None,
        ttl: float = MAINTAINER_CACHE_TTL,
    ):
        self.cache = cache
        self.coalescer = coalescer or RequestCoalescer()
        self.ttl = ttl

    async def get_maintainers(
        self, api: GitHubAPI, ref: RepositoryRef, progress: ProgressReporter = NULL_PROGRESS
    ) -> FrozenSet[str]:
        """Get maintainers of a repository.

        Never raises for upstream failures: those are logged and resolve to
        an empty set.

        Args:
            api: Client used for the collaborators request
            ref: Repository to inspect
            progress: Receives a message when a request is started

        Returns:
            Logins with push or admin permission
        """
        key = cache_key('maintainers', ref.full_name)
        cached = self.cache.get(key)
        if cached is not None:
            logging.info(f"Using cached maintainers for {ref}: {len(cached)} maintainers")
            return cached

        return await self.coalescer.acquire(key, lambda: self._fetch_maintainers(api, ref, key, progress))

    async def _fetch_maintainers(
        self, api: GitHubAPI, ref: RepositoryRef, key, progress: ProgressReporter
    ) -> FrozenSet[str]:
        progress.report("Fetching collaborators...")
        try:
            collaborators = await api.list_collaborators(ref)
        except ContributorStatsError as e:
            logging.warning(f"Could not fetch collaborators for {ref}: {e}")
            return frozenset()

        maintainers = maintainers_from_collaborators(collaborators)
        self.cache.set(key, maintainers, ttl=self.ttl)
        logging.info(f"Found {len(maintainers)} maintainers for {ref}: {', '.join(sorted(maintainers))}")
        return maintainers
