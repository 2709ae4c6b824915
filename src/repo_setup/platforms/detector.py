from pathlib import Path

from git.config import GitConfigParser

from repo_setup.errors import NoGitRemoteFoundError, UnsupportedPlatformOverrideError, UnsupportedRemoteFormatError
from repo_setup.platforms.remote import Platform, RemoteIdentity, parse_remote_url, ssh_alias_path
from repo_setup.utilities.logging import get_logger

logger = get_logger(__name__)

ORIGIN_SECTION = 'remote "origin"'


def _git_dir(dot_git: Path) -> Path | None:
    """The git directory behind `.git`, following the `gitdir:` file that worktrees and submodules use."""

    if dot_git.is_dir():
        return dot_git

    if not dot_git.is_file():
        return None

    content = dot_git.read_text(encoding="utf-8").strip()
    if not content.startswith("gitdir:"):
        return None

    git_dir = Path(content.removeprefix("gitdir:").strip())
    return git_dir if git_dir.is_absolute() else (dot_git.parent / git_dir).resolve()


def find_git_config(cwd: Path) -> Path | None:
    """Find the git config file of the working tree containing `cwd`.

    Linked worktrees share the config of the main repository through their `commondir` file.
    """

    cwd = cwd.resolve()

    for directory in (cwd, *cwd.parents):
        if (git_dir := _git_dir(directory / ".git")) is None:
            continue

        if (commondir := git_dir / "commondir").is_file():
            git_dir = (git_dir / commondir.read_text(encoding="utf-8").strip()).resolve()

        config_path = git_dir / "config"
        return config_path if config_path.is_file() else None

    return None


def read_origin_url(cwd: Path) -> str | None:
    """Read the `origin` remote URL straight from the git config file."""

    if not (config_path := find_git_config(cwd)):
        return None

    parser = GitConfigParser(file_or_files=str(config_path), read_only=True)
    parser.read()

    if not parser.has_section(ORIGIN_SECTION):
        return None

    url = parser.get_value(section=ORIGIN_SECTION, option="url", default="")

    return str(url).strip() or None


def validate_platform_override(platform_override: str | None) -> Platform | None:
    if not platform_override:
        return None

    try:
        return Platform(platform_override)
    except ValueError:
        raise UnsupportedPlatformOverrideError(platform=platform_override) from None


def detect(cwd: Path, platform_override: str | None = None) -> RemoteIdentity:
    """Detect the platform, owner and repository of the `origin` remote.

    Args:
        cwd: A directory inside the git working tree.
        platform_override: Force `github` or `bitbucket` regardless of the remote host.

    Raises:
        NoGitRemoteFoundError: If no origin remote is configured.
        UnsupportedRemoteFormatError: If the origin URL is not a GitHub or Bitbucket URL.
        UnsupportedPlatformOverrideError: If the override is not a supported platform.
    """

    override = validate_platform_override(platform_override)

    if not (remote_url := read_origin_url(cwd)):
        raise NoGitRemoteFoundError(cwd=str(cwd))

    identity = parse_remote_url(remote_url)

    if override is not None and override != identity.platform:
        logger.info(f"Overriding detected platform {identity.platform} with {override}")
        identity = identity.model_copy(update={"platform": override})

    return identity


def resolve_platform(cwd: Path, platform_override: str | None = None) -> Platform:
    """Pick the platform whose provider should be created, before the repository itself is resolved.

    Custom SSH host aliases (`git@work-bitbucket:owner/repo.git`) are a Bitbucket multi-account
    convention, so they resolve to Bitbucket unless overridden.
    """

    if override := validate_platform_override(platform_override):
        return override

    if not (remote_url := read_origin_url(cwd)):
        raise NoGitRemoteFoundError(cwd=str(cwd))

    try:
        return parse_remote_url(remote_url).platform
    except UnsupportedRemoteFormatError:
        if ssh_alias_path(remote_url) is not None:
            return Platform.BITBUCKET
        raise
