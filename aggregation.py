import logging
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from stats_types import (
    PLACEHOLDER_AVATAR,
    UNKNOWN_USER,
    CodeContribution,
    CodeStats,
    ContributorStats,
    PRCounters,
    PullRequestRecord,
    RepoStats,
)


def aggregate_repository(prs: Sequence[PullRequestRecord], maintainers: Set[str]) -> RepoStats:
    """Fold a repository's pull requests into per-contributor statistics.

    Maintainer status is decided once, when a contributor is first seen.

    Args:
        prs: Pull requests of the repository, newest first
        maintainers: Logins with push or admin permission

    Returns:
        RepoStats with contributors sorted by total PRs, descending. Ties keep
        the order in which contributors were first seen.
    """
    contributors: Dict[str, ContributorStats] = {}
    for pr in prs:
        username = pr.author.login
        current = contributors.get(username)
        if current is None:
            current = ContributorStats(
                username=username,
                avatarUrl=pr.author.avatar_url,
                isMaintainer=username in maintainers,
            )
        contributors[username] = current.counted(pr)

    ranked = sorted(contributors.values(), key=lambda c: c.totalPRs, reverse=True)
    for contributor in ranked:
        logging.debug(
            f"{contributor.username} {'IS' if contributor.isMaintainer else 'is NOT'} a maintainer"
        )

    return RepoStats(
        totalPRs=len(prs),
        contributors=tuple(ranked),
        recentPRs=tuple(prs),
    )


def aggregate_profile(prs: Iterable[PullRequestRecord]) -> Tuple[Dict[str, PRCounters], PRCounters]:
    """Fold a user's pull requests into per-repository and overall counters.

    Args:
        prs: Pull requests authored by the user

    Returns:
        Tuple containing:
        - Dictionary mapping repository names to counters, in first-seen order
        - Counters over all repositories
    """
    repositories: Dict[str, PRCounters] = {}
    total = PRCounters()
    for pr in prs:
        counters = repositories.get(pr.repository_name, PRCounters())
        repositories[pr.repository_name] = counters.counted(pr)
        total = total.counted(pr)
    return repositories, total


def top_repositories(repositories: Mapping[str, PRCounters], limit: int) -> List[str]:
    """Get the names of the ``limit`` repositories with the most pull requests.

    Uses a stable sort, so ties keep first-seen order.
    """
    ranked = sorted(repositories.items(), key=lambda entry: entry[1].totalPRs, reverse=True)
    return [name for name, _ in ranked[:limit]]


def aggregate_code_stats(weekly_stats: Iterable[Dict[str, Any]]) -> CodeStats:
    """Sum weekly addition, deletion and commit counts per contributor.

    Args:
        weekly_stats: Raw items of the contributor statistics endpoint

    Returns:
        CodeStats sorted by lines changed (additions + deletions), descending
    """
    contributions = []
    for stat in weekly_stats:
        author = stat.get('author') or {}
        weeks = stat.get('weeks') or []
        contributions.append(CodeContribution(
            username=author.get('login') or UNKNOWN_USER,
            avatarUrl=author.get('avatar_url') or PLACEHOLDER_AVATAR,
            additions=sum(week.get('a', 0) for week in weeks),
            deletions=sum(week.get('d', 0) for week in weeks),
            commits=stat.get('total', sum(week.get('c', 0) for week in weeks)),
        ))

    contributions.sort(key=lambda c: c.additions + c.deletions, reverse=True)
    return CodeStats(contributors=tuple(contributions))
