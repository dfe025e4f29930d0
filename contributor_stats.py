import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Callable, List, Optional

import pandas as pd

from aggregation import aggregate_code_stats, aggregate_profile, aggregate_repository, top_repositories
from github_api import GitHubAPI
from github_cache import RequestCoalescer, ResultCache, cache_key
from maintainers import MaintainerResolver
from pagination import fetch_repository_pull_requests, fetch_user_pull_requests
from progress import ProgressHandler, ProgressReporter
from repo_reference import RepositoryRef, parse_repository_reference
from stats_config import Settings, TokenProvider, env_token_provider
from stats_errors import ContributorStatsError
from stats_types import PLACEHOLDER_AVATAR, CodeStats, RepoStats, TimeFilter, UserStats

ApiFactory = Callable[[Optional[str], Settings], GitHubAPI]


class ContributorStatsService:
    """Fetches and aggregates pull request statistics for repositories and users.

    The result cache, maintainer resolver and progress reporter are owned by
    the service and shared by every fetch made through it.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        token_provider: TokenProvider = env_token_provider,
        result_cache: Optional[ResultCache] = None,
        maintainer_resolver: Optional[MaintainerResolver] = None,
        progress: Optional[ProgressReporter] = None,
        api_factory: ApiFactory = GitHubAPI,
    ):
        """Initialize the service.

        Args:
            settings: Limits and endpoints, defaults to ``Settings.from_env()``
            token_provider: Returns the GitHub token to forward, or None
            result_cache: Cache for aggregation results
            maintainer_resolver: Resolver for repository maintainers
            progress: Default receiver of progress messages
            api_factory: Builds the API client from a token and settings
        """
        self.settings = settings or Settings.from_env()
        self.token_provider = token_provider
        self.result_cache = result_cache or ResultCache(default_ttl=self.settings.general_cache_ttl)
        self.maintainer_resolver = maintainer_resolver or MaintainerResolver(
            self.result_cache,
            RequestCoalescer(self.settings.coalesce_grace_period),
            ttl=self.settings.maintainer_cache_ttl,
        )
        self.progress = progress or ProgressReporter()
        self.api_factory = api_factory

    def _reporter(self, progress: Optional[ProgressHandler]) -> ProgressReporter:
        return ProgressReporter(progress) if progress is not None else self.progress

    def _create_api(self, token_provider: Optional[TokenProvider]) -> GitHubAPI:
        token = (token_provider or self.token_provider)()
        return self.api_factory(token, self.settings)

    def parse_reference(self, raw_reference: str) -> RepositoryRef:
        return parse_repository_reference(raw_reference, host=self.settings.host)

    async def fetch_repository_stats(
        self,
        raw_reference: str,
        time_filter=TimeFilter.ONE_MONTH,
        progress: Optional[ProgressHandler] = None,
        token_provider: Optional[TokenProvider] = None,
    ) -> RepoStats:
        """Fetch pull request statistics for a repository.

        Args:
            raw_reference: ``owner/repo``, ``github.com/owner/repo`` or a URL
            time_filter: TimeFilter or its value ('2w', '1m', '3m', '6m', 'all')
            progress: Optional handler for this fetch's progress messages
            token_provider: Optional override of the service's token provider

        Returns:
            RepoStats; zero contributors means nothing matched the window

        Raises:
            InvalidReference: If the reference cannot be parsed
            TransportFailure: If the first page of pull requests cannot be fetched
            NotFound: If the repository does not exist
        """
        reporter = self._reporter(progress)
        ref = self.parse_reference(raw_reference)
        time_filter = TimeFilter.parse(time_filter)

        key = cache_key('repo', ref.full_name, time_filter)
        cached = self.result_cache.get(key)
        if cached is not None:
            logging.info(f"Using cached stats for {ref} ({time_filter.value})")
            reporter.report("Using cached results...")
            return cached

        logging.info(f"Fetching stats for {ref}")
        api = self._create_api(token_provider)
        try:
            reporter.report("Fetching repository information...")
            maintainers = await self.maintainer_resolver.get_maintainers(api, ref, reporter)

            reporter.report("Fetching pull requests...")
            prs = await fetch_repository_pull_requests(
                api, ref, time_filter.window_start(), self.settings, reporter
            )
        finally:
            api.close()

        reporter.report("Processing contributor data...")
        stats = aggregate_repository(prs, maintainers)
        self.result_cache.set(key, stats)
        return stats

    async def fetch_user_stats(
        self,
        username: str,
        time_filter=TimeFilter.ONE_MONTH,
        progress: Optional[ProgressHandler] = None,
        token_provider: Optional[TokenProvider] = None,
    ) -> UserStats:
        """Fetch pull request statistics for a user across repositories.

        The user counts as a maintainer if they have push or admin access to
        any of their most active repositories.

        Args:
            username: GitHub login
            time_filter: TimeFilter or its value
            progress: Optional handler for this fetch's progress messages
            token_provider: Optional override of the service's token provider

        Returns:
            UserStats; no repositories means nothing matched the window

        Raises:
            NotFound: If the user does not exist
            TransportFailure: If the user or the first search page cannot be fetched
        """
        username = (username or '').strip()
        if not username:
            raise ValueError("A GitHub username is required")
        reporter = self._reporter(progress)
        time_filter = TimeFilter.parse(time_filter)

        key = cache_key('user', username, time_filter)
        cached = self.result_cache.get(key)
        if cached is not None:
            logging.info(f"Using cached stats for user {username} ({time_filter.value})")
            reporter.report("Using cached results...")
            return cached

        api = self._create_api(token_provider)
        try:
            reporter.report(f"Fetching user data for {username}...")
            user = await api.get_user(username)
            avatar_url = user.get('avatar_url') or ''

            reporter.report(f"Fetching {username}'s pull requests...")
            prs = await fetch_user_pull_requests(
                api, username, avatar_url, time_filter.window_start(), self.settings, reporter
            )

            reporter.report(f"Processing repositories for {username}...")
            repositories, total_stats = aggregate_profile(prs)

            reporter.report("Checking maintainer status...")
            is_maintainer = await self._is_maintainer_of_any(
                api, username, top_repositories(repositories, self.settings.maintainer_check_top_n), reporter
            )
        finally:
            api.close()

        logging.info(f"Final maintainer status for {username}: {is_maintainer}")
        stats = UserStats(
            username=username,
            avatarUrl=avatar_url or PLACEHOLDER_AVATAR,
            repositories=repositories,
            pullRequests=tuple(prs),
            totalStats=total_stats,
            isMaintainer=is_maintainer,
        )
        self.result_cache.set(key, stats)
        return stats

    async def _is_maintainer_of_any(
        self, api: GitHubAPI, username: str, repo_names: List[str], reporter: ProgressReporter
    ) -> bool:
        if not repo_names:
            return False
        # every check is awaited so a slow repository is never skipped
        results = await asyncio.gather(
            *(self._is_maintainer_of(api, username, name, reporter) for name in repo_names),
            return_exceptions=True,
        )
        for name, result in zip(repo_names, results):
            if isinstance(result, Exception):
                logging.warning(f"Maintainer check for {username} on {name} failed: {result}")
        return any(result is True for result in results)

    async def _is_maintainer_of(
        self, api: GitHubAPI, username: str, repo_name: str, reporter: ProgressReporter
    ) -> bool:
        owner, _, repo = repo_name.partition('/')
        if not owner or not repo:
            return False
        try:
            maintainers = await self.maintainer_resolver.get_maintainers(
                api, RepositoryRef(owner=owner, repo=repo), reporter
            )
        except ContributorStatsError as e:
            logging.warning(f"Maintainer check for {username} on {repo_name} failed: {e}")
            return False
        result = username in maintainers
        logging.info(f"{username} maintainer status for {repo_name}: {result}")
        return result

    async def fetch_code_stats(
        self,
        raw_reference: str,
        progress: Optional[ProgressHandler] = None,
        token_provider: Optional[TokenProvider] = None,
    ) -> CodeStats:
        """Fetch additions, deletions and commits per contributor of a repository.

        Statistics GitHub is still computing come back empty and are not cached.
        """
        reporter = self._reporter(progress)
        ref = self.parse_reference(raw_reference)

        key = cache_key('code', ref.full_name, TimeFilter.ALL_TIME)
        cached = self.result_cache.get(key)
        if cached is not None:
            logging.info(f"Using cached code statistics for {ref}")
            return cached

        api = self._create_api(token_provider)
        try:
            reporter.report("Fetching code statistics...")
            weekly_stats = await api.contributor_code_stats(ref)
        finally:
            api.close()

        code_stats = aggregate_code_stats(weekly_stats)
        if code_stats.contributors:
            self.result_cache.set(key, code_stats)
        return code_stats


_default_service: Optional[ContributorStatsService] = None


def default_service() -> ContributorStatsService:
    """Get the service used by the module-level functions, creating it on first use."""
    global _default_service
    if _default_service is None:
        _default_service = ContributorStatsService()
    return _default_service


def register_progress_handler(callback: Optional[ProgressHandler]) -> None:
    """Install the progress callback of the default service; the last one registered wins."""
    default_service().progress.register(callback)


async def fetch_repository_stats(
    raw_reference: str,
    time_filter=TimeFilter.ONE_MONTH,
    *,
    token_provider: Optional[TokenProvider] = None,
    progress: Optional[ProgressHandler] = None,
    service: Optional[ContributorStatsService] = None,
) -> RepoStats:
    return await (service or default_service()).fetch_repository_stats(
        raw_reference, time_filter, progress=progress, token_provider=token_provider
    )


async def fetch_user_stats(
    username: str,
    time_filter=TimeFilter.ONE_MONTH,
    *,
    token_provider: Optional[TokenProvider] = None,
    progress: Optional[ProgressHandler] = None,
    service: Optional[ContributorStatsService] = None,
) -> UserStats:
    return await (service or default_service()).fetch_user_stats(
        username, time_filter, progress=progress, token_provider=token_provider
    )


async def fetch_code_stats(
    raw_reference: str,
    *,
    token_provider: Optional[TokenProvider] = None,
    progress: Optional[ProgressHandler] = None,
    service: Optional[ContributorStatsService] = None,
) -> CodeStats:
    return await (service or default_service()).fetch_code_stats(
        raw_reference, progress=progress, token_provider=token_provider
    )


def contributors_frame(stats: RepoStats) -> pd.DataFrame:
    """Build a table with one row per contributor, in ranking order."""
    columns = ['username', 'totalPRs', 'mergedPRs', 'openPRs', 'closedPRs', 'isMaintainer']
    rows = [contributor.to_dict() for contributor in stats.contributors]
    if any(contributor.additions is not None for contributor in stats.contributors):
        columns += ['additions', 'deletions', 'commits']
    return pd.DataFrame(rows, columns=columns)


def repositories_frame(stats: UserStats) -> pd.DataFrame:
    """Build a table with one row per repository the user opened pull requests in."""
    rows = [
        {'repository': name, **counters.to_dict()}
        for name, counters in stats.repositories.items()
    ]
    frame = pd.DataFrame(rows, columns=['repository', 'totalPRs', 'mergedPRs', 'openPRs', 'closedPRs'])
    return frame.sort_values('totalPRs', ascending=False, kind='stable').reset_index(drop=True)


def convert_to_tsv(frame: pd.DataFrame) -> str:
    return frame.to_csv(sep='\t', index=False)


async def _run(args: argparse.Namespace) -> str:
    token = args.github_token or os.environ.get("GITHUB_TOKEN")
    service = ContributorStatsService(token_provider=lambda: token)
    service.progress.register(lambda message: logging.info(message))

    if args.command == 'repo':
        stats = await service.fetch_repository_stats(args.reference, args.time_filter)
        if args.code_stats:
            try:
                stats = stats.with_code_stats(await service.fetch_code_stats(args.reference))
            except ContributorStatsError as e:
                logging.warning(f"Could not fetch code stats: {e}")
        if not stats.contributors:
            logging.info(f"No pull requests found for {args.reference} in the selected time range")
        if args.output_tsv:
            return convert_to_tsv(contributors_frame(stats))
        return json.dumps(stats.to_dict(), indent=4) + "\n"

    stats = await service.fetch_user_stats(args.username, args.time_filter)
    if args.output_tsv:
        return convert_to_tsv(repositories_frame(stats))
    return json.dumps(stats.to_dict(), indent=4) + "\n"


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Summarize GitHub pull request contributions")
    parser.add_argument("--github-token", help="GitHub token (defaults to GITHUB_TOKEN)")
    parser.add_argument(
        "--time-filter",
        choices=[f.value for f in TimeFilter],
        default=TimeFilter.ONE_MONTH.value,
        help="Only count pull requests created in this period",
    )
    parser.add_argument("--output-tsv", action="store_true", help="Output in TSV format")

    # accepted after the subcommand too; SUPPRESS keeps the top-level value when omitted
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--time-filter", choices=[f.value for f in TimeFilter], default=argparse.SUPPRESS)
    common.add_argument("--output-tsv", action="store_true", default=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(dest="command", required=True)

    repo_parser = subparsers.add_parser("repo", parents=[common], help="Contributor statistics for a repository")
    repo_parser.add_argument("reference", help="owner/repo, github.com/owner/repo or repository URL")
    repo_parser.add_argument(
        "--code-stats", action="store_true", help="Include additions, deletions and commits per contributor"
    )

    user_parser = subparsers.add_parser("user", parents=[common], help="Pull request statistics for a user")
    user_parser.add_argument("username", help="GitHub username")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        output = asyncio.run(_run(args))
    except (ContributorStatsError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(output, end="")
    return 0


if __name__ == "__main__":
    sys.exit(main())
