import re
from dataclasses import dataclass
from urllib.parse import urlparse

from stats_config import GITHUB_HOST
from stats_errors import InvalidReference

# Owner and repository names as accepted by GitHub
NAME_PATTERN = r"[A-Za-z0-9_.-]+"
SHORT_REFERENCE = re.compile(rf"^({NAME_PATTERN})/({NAME_PATTERN})$")


@dataclass(frozen=True)
class RepositoryRef:
    """An owner/repository pair identifying a GitHub repository."""

    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return self.full_name


def _normalize(raw: str) -> str:
    normalized = raw.strip()
    normalized = re.sub(r"\.git/?$", "", normalized)
    return re.sub(r"/$", "", normalized)


def parse_repository_reference(raw: str, host: str = GITHUB_HOST) -> RepositoryRef:
    """Parse a free-form repository reference into a RepositoryRef.

    Accepted forms, checked in order:
        - ``owner/repo``
        - ``github.com/owner/repo`` (no protocol)
        - any URL (protocol optional) on a host ending with ``github.com``
          whose path has at least two segments

    Args:
        raw: Reference as typed by the user
        host: Hostname the reference must belong to

    Returns:
        The parsed repository reference

    Raises:
        InvalidReference: If the input matches none of the accepted forms
    """
    if raw is None:
        raise InvalidReference(raw)

    normalized = _normalize(raw)

    match = SHORT_REFERENCE.match(normalized)
    if match:
        return RepositoryRef(owner=match.group(1), repo=match.group(2))

    host_relative = re.match(
        rf"^{re.escape(host)}/({NAME_PATTERN})/({NAME_PATTERN})", normalized
    )
    if host_relative:
        return RepositoryRef(owner=host_relative.group(1), repo=host_relative.group(2))

    url = normalized if normalized.startswith("http") else f"https://{normalized}"
    try:
        parsed = urlparse(url)
        hostname = parsed.hostname or ""
    except ValueError:
        raise InvalidReference(raw)

    if not hostname.endswith(host):
        raise InvalidReference(raw)

    path_parts = [part for part in parsed.path.split("/") if part]
    if len(path_parts) < 2:
        raise InvalidReference(raw)

    return RepositoryRef(owner=path_parts[0], repo=path_parts[1])
