from pathlib import Path
from typing import Any, override

from rich.console import Console

from repo_setup.clients.bitbucket import BitbucketClient
from repo_setup.clients.models import (
    AuthResult,
    BranchRestriction,
    RepositoryPermissions,
    RestrictionKind,
    RestrictionOutcome,
    SecretProvisionResult,
)
from repo_setup.errors import AlreadyExistsError, PlatformApiError
from repo_setup.platforms.remote import Platform
from repo_setup.providers.base import PlatformProvider
from repo_setup.templates.bitbucket import generate_pipelines_yaml
from repo_setup.utilities.logging import get_logger

logger = get_logger(__name__)

BITBUCKET_URL = "https://bitbucket.org"


def build_branch_restrictions(branch: str) -> list[BranchRestriction]:
    return [
        BranchRestriction(kind=RestrictionKind.REQUIRE_APPROVALS, pattern=branch, value=1),
        BranchRestriction(kind=RestrictionKind.REQUIRE_PASSING_BUILDS, pattern=branch, value=1),
        BranchRestriction(kind=RestrictionKind.PREVENT_FORCE_PUSH, pattern=branch),
        BranchRestriction(kind=RestrictionKind.PREVENT_DELETION, pattern=branch),
    ]


class BitbucketProvider(PlatformProvider):
    platform = Platform.BITBUCKET
    platform_name = "Bitbucket"

    client: BitbucketClient

    def __init__(self, client: BitbucketClient, console: Console | None = None):
        super().__init__(console=console)
        self.client = client

    @override
    async def aclose(self) -> None:
        await self.client.aclose()

    @override
    async def validate_auth(self) -> AuthResult:
        return await self.client.validate_auth()

    @override
    async def get_default_branch(self, owner: str, repo: str) -> str:
        return await self.client.get_default_branch(workspace=owner, repo_slug=repo)

    @override
    async def check_repository_permissions(self, owner: str, repo: str) -> RepositoryPermissions:
        return await self.client.get_repository_permissions(workspace=owner, repo_slug=repo)

    @override
    def default_repository_settings(self) -> dict[str, Any]:
        # Bitbucket has no merge-strategy flags on the repository resource.
        return {"fork_policy": "no_public_forks", "is_private": True}

    @override
    async def configure_repository_settings(self, owner: str, repo: str, settings: dict[str, Any]) -> None:
        await self.client.update_repository(workspace=owner, repo_slug=repo, settings=settings)

    @override
    async def create_branch_protection(self, owner: str, repo: str, branch: str) -> list[RestrictionOutcome]:
        outcomes: list[RestrictionOutcome] = []

        for restriction in build_branch_restrictions(branch):
            label = restriction.describe()

            try:
                await self.client.create_branch_restriction(workspace=owner, repo_slug=repo, restriction=restriction)
            except AlreadyExistsError:
                logger.info(f"Branch restriction {restriction.kind} already exists on {branch}")
                outcomes.append(RestrictionOutcome(label=label, status="already_exists"))
            except PlatformApiError as e:
                outcomes.append(RestrictionOutcome(label=label, status="failed", message=str(e)))
            else:
                outcomes.append(RestrictionOutcome(label=label, status="created"))

        return outcomes

    @override
    async def enable_ci(self, owner: str, repo: str) -> bool:
        try:
            await self.client.enable_pipelines(workspace=owner, repo_slug=repo)
        except AlreadyExistsError:
            return False

        return True

    @override
    async def provision_secret(self, owner: str, repo: str, name: str, value: str) -> SecretProvisionResult:
        return await self.client.set_pipeline_variable(workspace=owner, repo_slug=repo, key=name, value=value)

    @override
    def get_ci_config_path(self) -> str:
        return "bitbucket-pipelines.yml"

    @override
    def get_ci_config_file(self) -> str:
        return "bitbucket-pipelines.yml"

    @override
    def render_ci_config(self, cwd: Path) -> str:
        return generate_pipelines_yaml(cwd)

    @override
    def get_repo_url(self, owner: str, repo: str) -> str:
        return f"{BITBUCKET_URL}/{owner}/{repo}"

    @override
    def get_settings_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/admin"

    @override
    def get_secrets_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/admin/pipelines/repository-variables"

    @override
    def get_pipelines_url(self, owner: str, repo: str) -> str:
        return f"{self.get_repo_url(owner, repo)}/pipelines"

    @property
    @override
    def secret_label(self) -> str:
        return "variable"

    @override
    def _secret_guidance_extra(self) -> list[str]:
        return ['Check the "Secured" checkbox']
