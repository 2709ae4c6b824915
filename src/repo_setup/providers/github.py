from pathlib import Path
from typing import Any, override

from rich.console import Console

from repo_setup.clients.github import GitHubClient
from repo_setup.clients.models import AuthResult, RepositoryPermissions, RestrictionOutcome, SecretProvisionResult
from repo_setup.errors import AlreadyExistsError, PlatformApiError
from repo_setup.platforms.remote import Platform
from repo_setup.providers.base import PlatformProvider
from repo_setup.templates.github import generate_github_workflow

GITHUB_URL = "https://github.com"

REQUIRED_APPROVALS = 1


def ruleset_name(branch: str) -> str:
    return f"Protect {branch}"


def build_branch_ruleset(branch: str) -> dict[str, Any]:
    """One ruleset bundling review, force-push and deletion protection for `branch`."""

    return {
        "name": ruleset_name(branch),
        "target": "branch",
        "enforcement": "active",
        "conditions": {"ref_name": {"include": [f"refs/heads/{branch}"], "exclude": []}},
        "rules": [
            {"type": "deletion"},
            {"type": "non_fast_forward"},
            {
                "type": "pull_request",
                "parameters": {
                    "required_approving_review_count": REQUIRED_APPROVALS,
                    "dismiss_stale_reviews_on_push": True,
                    "require_code_owner_review": False,
                    "require_last_push_approval": False,
                    "required_review_thread_resolution": False,
                },
            },
        ],
    }


class GitHubProvider(PlatformProvider):
    platform = Platform.GITHUB
    platform_name = "GitHub"

    client: GitHubClient

    def __init__(self, client: GitHubClient, console: Console | None = None):
        super().__init__(console=console)
        self.client = client

    @override
    async def validate_auth(self) -> AuthResult:
        return await self.client.validate_auth()

    @override
    async def get_default_branch(self, owner: str, repo: str) -> str:
        return await self.client.get_default_branch(owner=owner, repo=repo)

    @override
    async def check_repository_permissions(self, owner: str, repo: str) -> RepositoryPermissions:
        return await self.client.get_repository_permissions(owner=owner, repo=repo)

    @override
    def default_repository_settings(self) -> dict[str, Any]:
        return {
            "has_issues": True,
            "allow_squash_merge": True,
            "allow_merge_commit": False,
            "allow_rebase_merge": True,
            "delete_branch_on_merge": True,
        }

    @override
    async def configure_repository_settings(self, owner: str, repo: str, settings: dict[str, Any]) -> None:
        await self.client.update_repository(owner=owner, repo=repo, settings=settings)

    @override
    async def create_branch_protection(self, owner: str, repo: str, branch: str) -> list[RestrictionOutcome]:
        name = ruleset_name(branch)

        if name in await self.client.list_ruleset_names(owner=owner, repo=repo):
            return [RestrictionOutcome(label=name, status="already_exists")]

        try:
            await self.client.create_ruleset(owner=owner, repo=repo, ruleset=build_branch_ruleset(branch))
        except AlreadyExistsError:
            return [RestrictionOutcome(label=name, status="already_exists")]
        except PlatformApiError as e:
            return [RestrictionOutcome(label=name, status="failed", message=str(e))]

        return [RestrictionOutcome(label=name, status="created")]

    @override
    async def enable_ci(self, owner: str, repo: str) -> bool:
        if await self.client.actions_enabled(owner=owner, repo=repo):
            return False

        await self.client.enable_actions(owner=owner, repo=repo)
        return True

    @override
    async def provision_secret(self, owner: str, repo: str, name: str, value: str) -> SecretProvisionResult:
        return await self.client.set_actions_secret(owner=owner, repo=repo, name=name, value=value)

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
        return f"{GITHUB_URL}/{owner}/{repo}"

    @override
    def get_settings_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/settings"

    @override
    def get_secrets_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/settings/secrets/actions"

    @override
    def get_pipelines_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/actions"
