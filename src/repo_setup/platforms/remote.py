import re
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from repo_setup.errors import UnsupportedRemoteFormatError


class Platform(StrEnum):
    GITHUB = "github"
    BITBUCKET = "bitbucket"


CANONICAL_HOSTS: dict[Platform, str] = {
    Platform.GITHUB: "github.com",
    Platform.BITBUCKET: "bitbucket.org",
}


class RemoteIdentity(BaseModel):
    """The hosting platform, owner and repository a git remote points at."""

    model_config = ConfigDict(frozen=True)

    platform: Platform = Field(description="The hosting platform of the remote.")
    owner: str = Field(description="The owner (GitHub user/organization or Bitbucket workspace).")
    repo: str = Field(description="The repository name or slug.")
    remote_url: str = Field(description="The remote URL the identity was parsed from.")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def _https_pattern(host: str) -> re.Pattern[str]:
    # https://host/owner/repo.git, optionally with user[:token]@ credentials
    return re.compile(rf"^https://(?:[^@/]+@)?{re.escape(host)}/([^/]+)/([^/]+?)(?:\.git)?/?$")


def _ssh_pattern(host: str) -> re.Pattern[str]:
    return re.compile(rf"^(?:ssh://)?git@{re.escape(host)}[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


REMOTE_PATTERNS: list[tuple[Platform, re.Pattern[str]]] = [
    (Platform.GITHUB, _https_pattern(CANONICAL_HOSTS[Platform.GITHUB])),
    (Platform.GITHUB, _ssh_pattern(CANONICAL_HOSTS[Platform.GITHUB])),
    (Platform.BITBUCKET, _https_pattern(CANONICAL_HOSTS[Platform.BITBUCKET])),
    (Platform.BITBUCKET, _ssh_pattern(CANONICAL_HOSTS[Platform.BITBUCKET])),
]

SSH_ALIAS_PATTERN = re.compile(r"^git@([^:@/]+):([^/]+/[^/]+)$")

OWNER_REPO_SUFFIX_PATTERN = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")


def parse_remote_url(url: str) -> RemoteIdentity:
    """Parse a GitHub or Bitbucket remote URL (HTTPS or SSH)."""

    url = url.strip()

    for platform, pattern in REMOTE_PATTERNS:
        if match := pattern.match(url):
            return RemoteIdentity(platform=platform, owner=match.group(1), repo=match.group(2), remote_url=url)

    raise UnsupportedRemoteFormatError(url=url)


def ssh_alias_path(url: str) -> str | None:
    """Return `owner/repo[.git]` when the URL uses a custom SSH host alias instead of a canonical host."""

    if not (match := SSH_ALIAS_PATTERN.match(url.strip())):
        return None

    if match.group(1) in CANONICAL_HOSTS.values():
        return None

    return match.group(2)


def normalize_ssh_alias(url: str, platform: Platform) -> str | None:
    """Rewrite `git@<alias>:owner/repo.git` to the platform's canonical host, or None if the URL has no alias."""

    if (path := ssh_alias_path(url)) is None:
        return None

    return f"git@{CANONICAL_HOSTS[platform]}:{path}"


def alias_remote_url(url: str, alias: str) -> str | None:
    """Build `git@<alias>:owner/repo.git` from any remote URL form."""

    if not (match := OWNER_REPO_SUFFIX_PATTERN.search(url.strip())):
        return None

    return f"git@{alias}:{match.group(1)}/{match.group(2)}.git"
