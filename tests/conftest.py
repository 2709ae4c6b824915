import json
from io import StringIO
from pathlib import Path
from typing import Any, override

import pytest
from git.repo import Repo
from rich.console import Console

from repo_setup.clients.models import AuthResult, RepositoryPermissions, RestrictionOutcome, SecretProvisionResult
from repo_setup.npm import NpmCli
from repo_setup.platforms.remote import Platform
from repo_setup.providers.base import PlatformProvider
from repo_setup.templates.github import generate_github_workflow

GITHUB_REMOTE = "git@github.com:acme/widgets.git"
BITBUCKET_REMOTE = "git@bitbucket.org:acme/widgets.git"

MUTATING_CALLS = {"configure_repository_settings", "create_branch_protection", "enable_ci", "provision_secret"}


def init_repository(path: Path, origin_url: str | None = GITHUB_REMOTE, files: dict[str, str] | None = None) -> Repo:
    """Create a git working tree with one commit and, optionally, an `origin` remote."""

    path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(path)

    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")
        writer.set_value("tag", "gpgsign", "false")

    files = {"README.md": "# widgets\n", **(files or {})}
    for name, content in files.items():
        file_path = path / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        _ = file_path.write_text(content, encoding="utf-8")

    _ = repo.git.add("--all")
    _ = repo.git.commit("-m", "initial commit")

    if origin_url is not None:
        _ = repo.create_remote("origin", origin_url)

    return repo


def package_json(name: str = "@acme/widgets", version: str = "1.0.0", private: bool = False, **extra: Any) -> str:
    return json.dumps({"name": name, "version": version, "private": private, **extra}, indent=2) + "\n"


def console_text(console: Console) -> str:
    return console.export_text()


@pytest.fixture
def console() -> Console:
    return Console(file=StringIO(), record=True, width=200, color_system=None)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """A GitHub checkout of acme/widgets without a package.json."""

    path = tmp_path / "widgets"
    _ = init_repository(path)
    return path


class ScriptedPrompter:
    """Answers confirmations from a script and records every question."""

    def __init__(self, confirmations: list[bool] | None = None, secrets: list[str] | None = None):
        self.confirmations = list(confirmations or [])
        self.secrets = list(secrets or [])
        self.questions: list[str] = []

    def confirm(self, message: str, default: bool = False) -> bool:
        self.questions.append(message)
        if not self.confirmations:
            msg = f"Unexpected confirmation: {message}"
            raise AssertionError(msg)
        return self.confirmations.pop(0)

    def secret(self, message: str) -> str:
        self.questions.append(message)
        if not self.secrets:
            msg = f"Unexpected secret prompt: {message}"
            raise AssertionError(msg)
        return self.secrets.pop(0)


class FakeNpm(NpmCli):
    """An npm CLI that never spawns a process."""

    def __init__(self, cwd: Path, version: str = "11.6.0", published: bool = True):
        super().__init__(cwd=cwd)
        self.version = version
        self.published = published

    @override
    def get_version(self) -> str:
        return self.version

    @override
    def package_exists(self, package_name: str) -> bool:
        return self.published


class RecordingProvider(PlatformProvider):
    """A GitHub-flavored provider that records every call instead of talking to an API."""

    platform = Platform.GITHUB
    platform_name = "GitHub"

    def __init__(
        self,
        console: Console | None = None,
        admin: bool = True,
        outcomes: list[RestrictionOutcome] | None = None,
        ci_already_enabled: bool = False,
    ):
        super().__init__(console=console)
        self.admin = admin
        self.outcomes = outcomes if outcomes is not None else [RestrictionOutcome(label="Protect main", status="created")]
        self.ci_already_enabled = ci_already_enabled
        self.calls: list[str] = []
        self.secrets: dict[str, str] = {}
        self.closed = False

    @property
    def mutating_calls(self) -> list[str]:
        return [call for call in self.calls if call in MUTATING_CALLS]

    @override
    async def aclose(self) -> None:
        self.closed = True

    @override
    async def validate_auth(self) -> AuthResult:
        self.calls.append("validate_auth")
        return AuthResult(valid=True, user="octocat")

    @override
    async def get_default_branch(self, owner: str, repo: str) -> str:
        self.calls.append("get_default_branch")
        return "main"

    @override
    async def check_repository_permissions(self, owner: str, repo: str) -> RepositoryPermissions:
        self.calls.append("check_repository_permissions")
        return RepositoryPermissions(admin=self.admin, push=True, pull=True)

    @override
    def default_repository_settings(self) -> dict[str, Any]:
        return {"delete_branch_on_merge": True}

    @override
    async def configure_repository_settings(self, owner: str, repo: str, settings: dict[str, Any]) -> None:
        self.calls.append("configure_repository_settings")

    @override
    async def create_branch_protection(self, owner: str, repo: str, branch: str) -> list[RestrictionOutcome]:
        self.calls.append("create_branch_protection")
        return self.outcomes

    @override
    async def enable_ci(self, owner: str, repo: str) -> bool:
        self.calls.append("enable_ci")
        return not self.ci_already_enabled

    @override
    async def provision_secret(self, owner: str, repo: str, name: str, value: str) -> SecretProvisionResult:
        self.calls.append("provision_secret")
        self.secrets[name] = value
        return "created"

    @override
    def get_ci_config_path(self) -> str:
        return ".github/workflows"

    @override
    def get_ci_config_file(self) -> str:
        return ".github/workflows/ci.yml"

    @override
    def render_ci_config(self, cwd: Path) -> str:
        return generate_github_workflow(cwd)

    @override
    def get_repo_url(self, owner: str, repo: str) -> str:
        return f"https://github.com/{owner}/{repo}"

    @override
    def get_settings_url(self, owner: str, repo: str) -> str:
        return f"https://github.com/{owner}/{repo}/settings"

    @override
    def get_secrets_url(self, owner: str, repo: str) -> str:
        return f"https://github.com/{owner}/{repo}/settings/secrets/actions"

    @override
    def get_pipelines_url(self, owner: str, repo: str) -> str:
        return f"https://github.com/{owner}/{repo}/actions"
