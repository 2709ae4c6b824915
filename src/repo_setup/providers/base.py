from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, ClassVar, Self

from rich.console import Console

from repo_setup.clients.models import AuthResult, RepositoryPermissions, RestrictionOutcome, SecretProvisionResult
from repo_setup.platforms.remote import Platform

NPM_TOKEN_URL = "https://www.npmjs.com/settings/tokens"


class PlatformProvider(ABC):
    """The repository administration operations the setup workflow needs from a hosting platform."""

    platform: ClassVar[Platform]
    platform_name: ClassVar[str]

    console: Console

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:  # noqa: B027
        """Release any network resources held by the provider."""

    @abstractmethod
    async def validate_auth(self) -> AuthResult:
        """Validate the credentials.

        Raises:
            AuthenticationError: If the credentials are invalid or expired.
        """

    @abstractmethod
    async def get_default_branch(self, owner: str, repo: str) -> str: ...

    @abstractmethod
    async def check_repository_permissions(self, owner: str, repo: str) -> RepositoryPermissions: ...

    @abstractmethod
    def default_repository_settings(self) -> dict[str, Any]:
        """The settings bag applied by `configure_repository_settings` during setup."""

    @abstractmethod
    async def configure_repository_settings(self, owner: str, repo: str, settings: dict[str, Any]) -> None: ...

    @abstractmethod
    async def create_branch_protection(self, owner: str, repo: str, branch: str) -> list[RestrictionOutcome]:
        """Create the platform's default protection bundle for `branch`.

        Safe to call repeatedly: records that already exist are reported as `already_exists`.
        """

    @abstractmethod
    async def enable_ci(self, owner: str, repo: str) -> bool:
        """Enable the platform's CI feature. Returns False when it was already enabled."""

    @abstractmethod
    async def provision_secret(self, owner: str, repo: str, name: str, value: str) -> SecretProvisionResult:
        """Store a CI secret, updating it in place when it already exists."""

    @abstractmethod
    def get_ci_config_path(self) -> str:
        """Where the platform looks for CI configuration, relative to the repository root."""

    @abstractmethod
    def get_ci_config_file(self) -> str:
        """The CI configuration file written during setup, relative to the repository root."""

    @abstractmethod
    def render_ci_config(self, cwd: Path) -> str:
        """Generate the CI configuration for the project in `cwd`."""

    @abstractmethod
    def get_repo_url(self, owner: str, repo: str) -> str: ...

    @abstractmethod
    def get_settings_url(self, owner: str, repo: str) -> str: ...

    @abstractmethod
    def get_secrets_url(self, owner: str, repo: str) -> str: ...

    @abstractmethod
    def get_pipelines_url(self, owner: str, repo: str) -> str: ...

    @property
    def secret_label(self) -> str:
        """What the platform calls a stored CI secret."""

        return "secret"

    def setup_npm_token_guidance(self, owner: str, repo: str) -> None:
        """Print how to create an npm token and store it for CI publishing."""

        self.console.print()
        self.console.print("[bold]NPM Token Setup Required[/bold]")
        self.console.print(f"To enable automated NPM publishing via {self.platform_name} CI, you need to:")
        self.console.print()
        self.console.print("1. Create an NPM Access Token:")
        self.console.print(f"   - Go to: {NPM_TOKEN_URL}")
        self.console.print('   - Click "Generate New Token" -> "Automation"')
        self.console.print("   - Copy the generated token")
        self.console.print()
        self.console.print(f"2. Add the token as a repository {self.secret_label}:")
        self.console.print(f"   - Go to: {self.get_secrets_url(owner, repo)}")
        self.console.print("   - Name: NPM_TOKEN")
        self.console.print("   - Value: <your NPM token>")
        for line in self._secret_guidance_extra():
            self.console.print(f"   - {line}")
        self.console.print()
        self.console.print("3. Verify Setup:")
        self.console.print(f"   - The {self.secret_label} should appear in your repository {self.secret_label}s list")
        self.console.print(f"   - {self.platform_name} CI can now publish to NPM automatically")
        self.console.print()

    def _secret_guidance_extra(self) -> list[str]:
        return []
