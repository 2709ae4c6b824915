from logging import Logger
from typing import Any, Self

import httpx

from repo_setup.clients.models import AuthResult, BranchRestriction, PipelineVariable, RepositoryPermissions, SecretProvisionResult
from repo_setup.errors import CONFLICT_STATUS, AlreadyExistsError, AuthenticationError, PlatformApiError
from repo_setup.utilities.logging import get_logger

API_BASE = "https://api.bitbucket.org/2.0"

NO_CONTENT_STATUS = 204

ALREADY_EXISTS_MARKERS = ("already exists", "already enabled")


def build_auth(token: str, username: str | None = None) -> httpx.Auth | dict[str, str]:
    """App passwords use basic auth with the username; access tokens use bearer auth."""

    if username:
        return httpx.BasicAuth(username=username, password=token)

    return {"Authorization": f"Bearer {token}"}


def error_message(response: httpx.Response) -> str:
    """Bitbucket errors look like `{"type": "error", "error": {"message": "..."}}`."""

    default = f"Bitbucket API error: {response.status_code} {response.reason_phrase}"

    try:
        body: Any = response.json()  # pyright: ignore[reportAny]
    except ValueError:
        return default

    if isinstance(body, dict) and isinstance(error := body.get("error"), dict):  # pyright: ignore[reportUnknownMemberType]
        return str(error.get("message") or default)  # pyright: ignore[reportUnknownMemberType, reportUnknownArgumentType]

    return default


class BitbucketClient:
    """A small Bitbucket Cloud REST API v2 client for repository administration."""

    http_client: httpx.AsyncClient
    logger: Logger

    def __init__(
        self,
        token: str | None = None,
        username: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        logger: Logger | None = None,
    ):
        if http_client is None:
            if not token:
                msg = "A token or an http client is required"
                raise ValueError(msg)

            auth = build_auth(token=token, username=username)
            http_client = httpx.AsyncClient(
                base_url=API_BASE,
                auth=auth if isinstance(auth, httpx.Auth) else None,
                headers=auth if isinstance(auth, dict) else None,
            )

        self.http_client = http_client
        self.logger = logger or get_logger(__name__)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http_client.aclose()

    async def _request(
        self,
        action: str,
        method: str,
        endpoint: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        auth_check: bool = False,
    ) -> Any:  # noqa: ANN401
        """Send a request and return the decoded JSON body (None for 204).

        Raises:
            AuthenticationError: If the credentials are rejected while validating them.
            AlreadyExistsError: On 409 or an "already exists" error message.
            PlatformApiError: On any other non-2xx response or transport failure.
        """

        # Bodies may carry variable values, so only the target is logged.
        self.logger.debug(f"Performing {action}: {method} {endpoint}")

        try:
            response = await self.http_client.request(method=method, url=endpoint, json=json_body, params=params)
        except httpx.HTTPError as e:
            self.logger.warning(f"{action} failed: {e}")
            raise PlatformApiError(action=action, message=str(e)) from e

        if response.is_success:
            if response.status_code == NO_CONTENT_STATUS or not response.content:
                return None
            return response.json()

        status = response.status_code
        message = error_message(response)

        self.logger.warning(f"{action} failed with status {status}: {message}")

        if auth_check and status in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            raise AuthenticationError(action=action, status=status, message=message)

        if status == CONFLICT_STATUS or any(marker in message.lower() for marker in ALREADY_EXISTS_MARKERS):
            raise AlreadyExistsError(action=action, status=status, message=message)

        raise PlatformApiError(action=action, status=status, message=message)

    async def validate_auth(self) -> AuthResult:
        data = await self._request(action="Validate token", method="GET", endpoint="/user", auth_check=True)
        return AuthResult(valid=True, user=data.get("display_name") or data.get("username") or "unknown")

    async def get_default_branch(self, workspace: str, repo_slug: str) -> str:
        data = await self._request(action="Get repository", method="GET", endpoint=f"/repositories/{workspace}/{repo_slug}")

        if mainbranch := data.get("mainbranch"):
            return str(mainbranch.get("name") or "main")

        return "main"

    async def get_repository_permissions(self, workspace: str, repo_slug: str) -> RepositoryPermissions:
        data = await self._request(
            action="Check repository permissions",
            method="GET",
            endpoint="/user/permissions/repositories",
            params={"q": f'repository.full_name="{workspace}/{repo_slug}"'},
        )

        if not (values := (data or {}).get("values")):
            return RepositoryPermissions(admin=False, push=False, pull=True)

        permission = values[0].get("permission")

        return RepositoryPermissions(
            admin=permission == "admin",
            push=permission in ("admin", "write"),
            pull=True,
        )

    async def update_repository(self, workspace: str, repo_slug: str, settings: dict[str, Any]) -> None:
        _ = await self._request(
            action="Update repository settings",
            method="PUT",
            endpoint=f"/repositories/{workspace}/{repo_slug}",
            json_body=settings,
        )

    async def create_branch_restriction(self, workspace: str, repo_slug: str, restriction: BranchRestriction) -> None:
        _ = await self._request(
            action=f"Create branch restriction {restriction.kind}",
            method="POST",
            endpoint=f"/repositories/{workspace}/{repo_slug}/branch-restrictions",
            json_body=restriction.model_dump(mode="json", exclude_none=True),
        )

    async def enable_pipelines(self, workspace: str, repo_slug: str) -> None:
        _ = await self._request(
            action="Enable Pipelines",
            method="PUT",
            endpoint=f"/repositories/{workspace}/{repo_slug}/pipelines_config",
            json_body={"enabled": True},
        )

    async def list_pipeline_variables(self, workspace: str, repo_slug: str) -> list[PipelineVariable]:
        endpoint: str | None = f"/repositories/{workspace}/{repo_slug}/pipelines_config/variables/"
        variables: list[PipelineVariable] = []

        while endpoint:
            data = await self._request(action="List pipeline variables", method="GET", endpoint=endpoint)
            variables.extend(PipelineVariable.model_validate(value) for value in data.get("values", []))
            endpoint = data.get("next")

        return variables

    async def set_pipeline_variable(self, workspace: str, repo_slug: str, key: str, value: str) -> SecretProvisionResult:
        """Create a secured repository variable, updating the existing one in place on conflict."""

        endpoint = f"/repositories/{workspace}/{repo_slug}/pipelines_config/variables/"
        body = {"key": key, "value": value, "secured": True}

        try:
            _ = await self._request(action=f"Create pipeline variable {key}", method="POST", endpoint=endpoint, json_body=body)
        except AlreadyExistsError:
            self.logger.info(f"Pipeline variable {key} already exists, updating it")
        else:
            return "created"

        existing = next((variable for variable in await self.list_pipeline_variables(workspace, repo_slug) if variable.key == key), None)

        if existing is None:
            raise PlatformApiError(action=f"Update pipeline variable {key}", message="Variable reported as existing but was not found")

        _ = await self._request(
            action=f"Update pipeline variable {key}",
            method="PUT",
            endpoint=f"{endpoint}{existing.uuid}",
            json_body=body,
        )

        return "updated"
