from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

UNKNOWN_USER = "unknown-user"
PLACEHOLDER_AVATAR = "https://github.com/identicons/placeholder.png"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class TimeFilter(Enum):
    """Lower bound on pull request creation time selected by the caller."""

    TWO_WEEKS = "2w"
    ONE_MONTH = "1m"
    THREE_MONTHS = "3m"
    SIX_MONTHS = "6m"
    ALL_TIME = "all"

    @property
    def days(self) -> Optional[int]:
        return TIME_FILTER_DAYS[self]

    def window_start(self, now: Optional[datetime] = None) -> datetime:
        """Get the earliest creation time included by this filter.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Timezone-aware lower bound, the Unix epoch for ``all``
        """
        if self.days is None:
            return EPOCH
        now = now or datetime.now(timezone.utc)
        return now - timedelta(days=self.days)

    @classmethod
    def parse(cls, value: Any) -> "TimeFilter":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(f.value for f in cls)
            raise ValueError(f"Unknown time filter {value!r}, expected one of: {choices}")


TIME_FILTER_DAYS = {
    TimeFilter.TWO_WEEKS: 14,
    TimeFilter.ONE_MONTH: 30,
    TimeFilter.THREE_MONTHS: 90,
    TimeFilter.SIX_MONTHS: 180,
    TimeFilter.ALL_TIME: None,
}


@dataclass(frozen=True)
class PullRequestAuthor:
    login: str = UNKNOWN_USER
    avatar_url: str = PLACEHOLDER_AVATAR


@dataclass(frozen=True)
class PullRequestRecord:
    """A pull request normalized from a listing or search response."""

    number: int
    title: str
    state: str
    created_at: str
    merged_at: Optional[str]
    url: str
    repository_name: str
    author: PullRequestAuthor
    repository_url: str = ""

    @property
    def is_merged(self) -> bool:
        return bool(self.merged_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'number': self.number,
            'title': self.title,
            'state': self.state,
            'created_at': self.created_at,
            'merged_at': self.merged_at,
            'html_url': self.url,
            'repository_url': self.repository_url,
            'repository_name': self.repository_name,
            'user': {
                'login': self.author.login,
                'avatar_url': self.author.avatar_url,
            },
        }


@dataclass(frozen=True)
class PRCounters:
    """Merged/open/closed tally; every counted PR lands in exactly one bucket."""

    totalPRs: int = 0
    mergedPRs: int = 0
    openPRs: int = 0
    closedPRs: int = 0

    def counted(self, pr: PullRequestRecord) -> "PRCounters":
        """Return a copy of these counters with ``pr`` added."""
        if pr.is_merged:
            bucket = 'mergedPRs'
        elif pr.state == "open":
            bucket = 'openPRs'
        else:
            bucket = 'closedPRs'
        return replace(self, totalPRs=self.totalPRs + 1, **{bucket: getattr(self, bucket) + 1})

    def to_dict(self) -> Dict[str, int]:
        return {
            'totalPRs': self.totalPRs,
            'mergedPRs': self.mergedPRs,
            'openPRs': self.openPRs,
            'closedPRs': self.closedPRs,
        }


@dataclass(frozen=True)
class ContributorStats(PRCounters):
    username: str = UNKNOWN_USER
    avatarUrl: str = PLACEHOLDER_AVATAR
    isMaintainer: bool = False
    additions: Optional[int] = None
    deletions: Optional[int] = None
    commits: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'username': self.username,
            'avatarUrl': self.avatarUrl,
            **super().to_dict(),
            'isMaintainer': self.isMaintainer,
        }
        if self.additions is not None:
            data['additions'] = self.additions
            data['deletions'] = self.deletions
            data['commits'] = self.commits
        return data


@dataclass(frozen=True)
class CodeContribution:
    username: str
    avatarUrl: str
    additions: int
    deletions: int
    commits: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'avatarUrl': self.avatarUrl,
            'additions': self.additions,
            'deletions': self.deletions,
            'commits': self.commits,
        }


@dataclass(frozen=True)
class CodeStats:
    """Line and commit totals per contributor for a repository."""

    contributors: Tuple[CodeContribution, ...] = ()

    @property
    def total_additions(self) -> int:
        return sum(c.additions for c in self.contributors)

    @property
    def total_deletions(self) -> int:
        return sum(c.deletions for c in self.contributors)

    @property
    def total_commits(self) -> int:
        return sum(c.commits for c in self.contributors)

    def by_username(self) -> Dict[str, CodeContribution]:
        return {c.username: c for c in self.contributors}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'contributors': [c.to_dict() for c in self.contributors],
            'totalAdditions': self.total_additions,
            'totalDeletions': self.total_deletions,
            'totalCommits': self.total_commits,
        }


@dataclass(frozen=True)
class RepoStats:
    """Aggregated pull request statistics for one repository."""

    totalPRs: int
    contributors: Tuple[ContributorStats, ...]
    recentPRs: Tuple[PullRequestRecord, ...]

    def with_code_stats(self, code_stats: CodeStats) -> "RepoStats":
        """Return a copy whose contributors carry additions, deletions and commits.

        Contributors absent from the code statistics keep ``None`` values.
        """
        by_username = code_stats.by_username()
        contributors = []
        for contributor in self.contributors:
            code = by_username.get(contributor.username)
            if code is None:
                contributors.append(replace(contributor))
            else:
                contributors.append(replace(
                    contributor,
                    additions=code.additions,
                    deletions=code.deletions,
                    commits=code.commits,
                ))
        return replace(self, contributors=tuple(contributors))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalPRs': self.totalPRs,
            'contributors': [c.to_dict() for c in self.contributors],
            'recentPRs': [pr.to_dict() for pr in self.recentPRs],
        }


@dataclass(frozen=True)
class UserStats:
    """Aggregated pull request statistics for one GitHub user."""

    username: str
    avatarUrl: str
    repositories: Mapping[str, PRCounters] = field(default_factory=dict)
    pullRequests: Tuple[PullRequestRecord, ...] = ()
    totalStats: PRCounters = field(default_factory=PRCounters)
    isMaintainer: bool = False

    def __post_init__(self):
        # read-only view so cached results cannot be edited in place
        object.__setattr__(self, 'repositories', MappingProxyType(dict(self.repositories)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'avatarUrl': self.avatarUrl,
            'repositories': {name: counters.to_dict() for name, counters in self.repositories.items()},
            'pullRequests': [pr.to_dict() for pr in self.pullRequests],
            'totalStats': self.totalStats.to_dict(),
            'isMaintainer': self.isMaintainer,
        }


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a GitHub ISO-8601 timestamp such as ``2024-01-31T12:00:00Z``.

    Returns:
        A timezone-aware datetime, or None when the value is missing or malformed
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
