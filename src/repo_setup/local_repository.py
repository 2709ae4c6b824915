from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Self

from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.repo import Repo

from repo_setup.errors import GitOperationFailedError, NotAGitRepositoryError
from repo_setup.platforms.detector import ORIGIN_SECTION
from repo_setup.platforms.remote import alias_remote_url
from repo_setup.utilities.logging import get_logger

logger = get_logger(__name__)

ORIGIN = "origin"


def _stderr(error: GitCommandError) -> str:
    return str(error.stderr or error).strip()


class LocalRepository:
    """The local git working tree the setup runs in."""

    repo: Repo

    def __init__(self, repo: Repo):
        self.repo = repo

    @classmethod
    def open(cls, cwd: Path) -> Self:
        """Open the working tree containing `cwd`.

        Raises:
            NotAGitRepositoryError: If `cwd` is not inside a git working tree.
        """

        try:
            repo = Repo(path=cwd, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotAGitRepositoryError(cwd=str(cwd)) from e

        if repo.bare:
            raise NotAGitRepositoryError(cwd=str(cwd))

        return cls(repo=repo)

    @property
    def root(self) -> Path:
        return Path(str(self.repo.working_tree_dir))

    def relative_path(self, path: Path) -> str:
        """`path` relative to the working tree root, as git expects it from the root."""

        return path.resolve().relative_to(self.root.resolve()).as_posix()

    def get_origin_url(self) -> str | None:
        try:
            return self.repo.remote(ORIGIN).url
        except ValueError:
            return None

    def set_origin_url(self, url: str) -> None:
        with self.repo.config_writer() as writer:
            writer.set_value(section=ORIGIN_SECTION, option="url", value=url)

    @contextmanager
    def remote_url_override(self, url: str | None) -> Iterator[None]:
        """Point `origin` at `url` for the duration of the block, restoring the original URL on every exit path."""

        original = self.get_origin_url()

        if url is None or original is None or url == original:
            yield
            return

        logger.info(f"Temporarily setting origin to {url}")
        self.set_origin_url(url)

        try:
            yield
        finally:
            self.set_origin_url(original)
            logger.info(f"Restored origin to {original}")

    def path_has_changes(self, path: str) -> bool:
        """Whether `path` is untracked, modified or staged, ignoring the rest of the tree."""

        try:
            return bool(self.repo.git.status("--porcelain", "--", path).strip())
        except GitCommandError as e:
            raise GitOperationFailedError(operation="status", message=_stderr(e), suggestion=f"git status -- {path}") from e

    def commit_paths(self, paths: list[str], message: str) -> None:
        try:
            _ = self.repo.git.add("--", *paths)
            _ = self.repo.git.commit("-m", message, "--", *paths)
        except GitCommandError as e:
            raise GitOperationFailedError(
                operation="commit",
                message=_stderr(e),
                suggestion=f'git add {" ".join(paths)} && git commit -m "{message}"',
            ) from e

    def tag_exists(self, tag: str) -> bool:
        return any(existing.name == tag for existing in self.repo.tags)

    def create_tag(self, tag: str) -> None:
        try:
            _ = self.repo.create_tag(tag)
        except GitCommandError as e:
            raise GitOperationFailedError(operation="tag", message=_stderr(e), suggestion=f"git tag {tag}") from e

    def _push(self, refspecs: list[str]) -> None:
        _ = self.repo.git.push(ORIGIN, *refspecs)

    def push(self, refspecs: list[str], ssh_alias: str | None = None) -> bool:
        """Push to `origin`, retrying once through `ssh_alias` when the first push fails.

        Returns whether the alias was used. The original remote URL is restored after the retry.

        Raises:
            GitOperationFailedError: If the push (and the alias retry, when attempted) fails.
        """

        suggestion = f"git push {ORIGIN} {' '.join(refspecs)}"

        try:
            self._push(refspecs)
        except GitCommandError as e:
            first_error = e
        else:
            return False

        original = self.get_origin_url()

        if ssh_alias is None or original is None or (alias_url := alias_remote_url(original, ssh_alias)) is None:
            raise GitOperationFailedError(operation="push", message=_stderr(first_error), suggestion=suggestion) from first_error

        logger.warning(f"Push failed ({_stderr(first_error)}), retrying through SSH alias {ssh_alias}")

        try:
            with self.remote_url_override(alias_url):
                self._push(refspecs)
        except GitCommandError as e:
            raise GitOperationFailedError(operation="push", message=_stderr(e), suggestion=suggestion) from e

        return True
