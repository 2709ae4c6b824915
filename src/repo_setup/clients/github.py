import json
from collections.abc import Awaitable, Callable
from logging import Logger
from typing import Any, Literal, overload

from githubkit import GitHub as GitHubKit
from githubkit.auth.token import TokenAuthStrategy
from githubkit.exception import GitHubException as GitHubKitGitHubException
from githubkit.exception import RequestFailed as GitHubKitRequestFailed
from githubkit.response import Response as GitHubKitResponse
from githubkit.retry import RetryChainDecision, RetryRateLimit, RetryServerError
from githubkit.versions.v2022_11_28.models import FullRepository as GitHubKitFullRepository
from nacl import encoding, public

from repo_setup.clients.models import AuthResult, RepositoryPermissions, SecretProvisionResult
from repo_setup.errors import CONFLICT_STATUS, AlreadyExistsError, AuthenticationError, PlatformApiError
from repo_setup.utilities.logging import get_logger

NOT_FOUND_ERROR = 404
UNAUTHORIZED_ERROR = 401
FORBIDDEN_ERROR = 403
UNPROCESSABLE_ERROR = 422

ALREADY_EXISTS_MARKERS = ("already exists", "must be unique", "name must be unique")


def get_githubkit_client(token: str) -> GitHubKit[TokenAuthStrategy]:
    # Retry server errors up to 3 times
    retry_server_error = RetryServerError()

    # Retry rate limit errors up to 3 times
    retry_rate_limit = RetryRateLimit(max_retry=3)

    retry_chain = RetryChainDecision(
        retry_server_error,
        retry_rate_limit,
    )

    return GitHubKit[TokenAuthStrategy](auth=TokenAuthStrategy(token=token), auto_retry=retry_chain)


def encrypt_secret(public_key: str, secret_value: str) -> str:
    """Seal a secret value with the repository's Actions public key."""

    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder)
    sealed_box = public.SealedBox(key)
    return encoding.Base64Encoder().encode(sealed_box.encrypt(secret_value.encode("utf-8"))).decode("utf-8")


def error_message(request_failed: GitHubKitRequestFailed) -> str:
    """Pull the `message` field out of a GitHub error body, falling back to the raw text."""

    try:
        body: Any = json.loads(request_failed.response.content)  # pyright: ignore[reportAny]
    except (json.JSONDecodeError, ValueError):
        return request_failed.response.text

    if isinstance(body, dict):
        message = str(body.get("message", ""))  # pyright: ignore[reportUnknownMemberType, reportUnknownArgumentType]
        if errors := body.get("errors"):  # pyright: ignore[reportUnknownMemberType, reportUnknownVariableType]
            message += f" {errors}"
        return message.strip()

    return request_failed.response.text


class GitHubClient:
    """Thin wrapper around the githubkit REST client for repository administration."""

    githubkit_client: GitHubKit[Any]
    logger: Logger

    log_requests: bool
    log_on_error: bool

    def __init__(
        self,
        token: str | None = None,
        githubkit_client: GitHubKit[Any] | None = None,
        logger: Logger | None = None,
        log_requests: bool = False,
        log_on_error: bool = True,
    ):
        if githubkit_client is None:
            if not token:
                msg = "A token or a githubkit client is required"
                raise ValueError(msg)
            githubkit_client = get_githubkit_client(token=token)

        self.githubkit_client = githubkit_client
        self.logger = logger or get_logger(__name__)
        self.log_requests = log_requests
        self.log_on_error = log_on_error

    @overload
    async def _request(
        self,
        action: str,
        error_on_not_found: Literal[True] = True,
        *,
        auth_check: bool = False,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> GitHubKitResponse[Any]: ...

    @overload
    async def _request(
        self,
        action: str,
        error_on_not_found: Literal[False] = False,
        *,
        auth_check: bool = False,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> GitHubKitResponse[Any] | None: ...

    async def _request(
        self,
        action: str,
        error_on_not_found: bool = True,
        *,
        auth_check: bool = False,
        method: Callable[..., Awaitable[GitHubKitResponse[Any]]],
        **request_args: Any,  # pyright: ignore[reportAny]
    ) -> GitHubKitResponse[Any] | None:
        """Perform a request and map githubkit failures onto the setup error taxonomy.

        Args:
            action: The action being performed.
            error_on_not_found: Whether to raise an error if the resource is not found.

        Raises:
            AuthenticationError: If the token is rejected.
            AlreadyExistsError: If the resource being created already exists.
            PlatformApiError: If the request fails for any other reason.
        """

        request_logger = self.logger.info if self.log_requests else self.logger.debug
        error_logger = self.logger.warning if self.log_on_error else self.logger.debug

        # Request bodies may carry sealed secrets, so only the target is logged.
        request_logger(f"Performing {action} using {method.__name__}")

        try:
            return await method(**request_args)
        except GitHubKitRequestFailed as e:
            status = e.response.status_code
            message = error_message(e)

            if status == NOT_FOUND_ERROR and not error_on_not_found:
                return None

            error_logger(f"{action} failed with status {status}: {message}")

            if status in (UNAUTHORIZED_ERROR, FORBIDDEN_ERROR) and auth_check:
                raise AuthenticationError(action=action, status=status, message=message) from e

            if status == CONFLICT_STATUS or (
                status == UNPROCESSABLE_ERROR and any(marker in message.lower() for marker in ALREADY_EXISTS_MARKERS)
            ):
                raise AlreadyExistsError(action=action, status=status, message=message) from e

            raise PlatformApiError(action=action, status=status, message=message) from e
        except GitHubKitGitHubException as e:
            error_logger(f"Error performing {action}: {e}")

            raise PlatformApiError(action=action, message=str(e)) from e

    async def validate_auth(self) -> AuthResult:
        response = await self._request(
            action="Validate token",
            auth_check=True,
            method=self.githubkit_client.rest.users.async_get_authenticated,
        )
        return AuthResult(valid=True, user=response.parsed_data.login)

    async def get_repository(self, owner: str, repo: str) -> GitHubKitFullRepository:
        response = await self._request(
            action=f"Get repository {owner}/{repo}",
            method=self.githubkit_client.rest.repos.async_get,
            owner=owner,
            repo=repo,
        )
        return response.parsed_data

    async def get_default_branch(self, owner: str, repo: str) -> str:
        """Get the default branch of a repository."""

        repository = await self.get_repository(owner=owner, repo=repo)
        return str(repository.default_branch)

    async def get_repository_permissions(self, owner: str, repo: str) -> RepositoryPermissions:
        """Get the authenticated user's permissions, as reported on the repository itself."""

        repository = await self.get_repository(owner=owner, repo=repo)

        if not (permissions := getattr(repository, "permissions", None)):
            return RepositoryPermissions(admin=False, push=False, pull=True)

        return RepositoryPermissions(
            admin=bool(permissions.admin),
            push=bool(permissions.push),
            pull=bool(permissions.pull),
        )

    async def update_repository(self, owner: str, repo: str, settings: dict[str, Any]) -> None:
        _ = await self._request(
            action=f"Update repository {owner}/{repo}",
            method=self.githubkit_client.rest.repos.async_update,
            owner=owner,
            repo=repo,
            data=settings,
        )

    async def list_ruleset_names(self, owner: str, repo: str) -> list[str]:
        response = await self._request(
            action=f"List rulesets for {owner}/{repo}",
            error_on_not_found=False,
            method=self.githubkit_client.rest.repos.async_get_repo_rulesets,
            owner=owner,
            repo=repo,
        )

        if response is None:
            return []

        return [ruleset.name for ruleset in response.parsed_data]

    async def create_ruleset(self, owner: str, repo: str, ruleset: dict[str, Any]) -> None:
        _ = await self._request(
            action=f"Create ruleset {ruleset.get('name')} for {owner}/{repo}",
            method=self.githubkit_client.rest.repos.async_create_repo_ruleset,
            owner=owner,
            repo=repo,
            data=ruleset,
        )

    async def actions_enabled(self, owner: str, repo: str) -> bool:
        response = await self._request(
            action=f"Get GitHub Actions permissions for {owner}/{repo}",
            method=self.githubkit_client.rest.actions.async_get_github_actions_permissions_repository,
            owner=owner,
            repo=repo,
        )
        return bool(response.parsed_data.enabled)

    async def enable_actions(self, owner: str, repo: str) -> None:
        _ = await self._request(
            action=f"Enable GitHub Actions for {owner}/{repo}",
            method=self.githubkit_client.rest.actions.async_set_github_actions_permissions_repository,
            owner=owner,
            repo=repo,
            data={"enabled": True, "allowed_actions": "all"},
        )

    async def actions_secret_exists(self, owner: str, repo: str, name: str) -> bool:
        response = await self._request(
            action=f"Get Actions secret {name} for {owner}/{repo}",
            error_on_not_found=False,
            method=self.githubkit_client.rest.actions.async_get_repo_secret,
            owner=owner,
            repo=repo,
            secret_name=name,
        )
        return response is not None

    async def set_actions_secret(self, owner: str, repo: str, name: str, value: str) -> SecretProvisionResult:
        """Create or update a repository Actions secret, sealed with the repository public key."""

        existed = await self.actions_secret_exists(owner=owner, repo=repo, name=name)

        key_response = await self._request(
            action=f"Get Actions public key for {owner}/{repo}",
            method=self.githubkit_client.rest.actions.async_get_repo_public_key,
            owner=owner,
            repo=repo,
        )
        public_key = key_response.parsed_data

        _ = await self._request(
            action=f"Set Actions secret {name} for {owner}/{repo}",
            method=self.githubkit_client.rest.actions.async_create_or_update_repo_secret,
            owner=owner,
            repo=repo,
            secret_name=name,
            data={"encrypted_value": encrypt_secret(public_key=public_key.key, secret_value=value), "key_id": public_key.key_id},
        )

        return "updated" if existed else "created"
