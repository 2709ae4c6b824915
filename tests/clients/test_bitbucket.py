import json
from collections.abc import Callable

import httpx
import pytest
from inline_snapshot import snapshot

from repo_setup.clients.bitbucket import API_BASE, BitbucketClient, build_auth, error_message
from repo_setup.clients.models import BranchRestriction, RestrictionKind
from repo_setup.errors import AlreadyExistsError, AuthenticationError, PlatformApiError

type Handler = Callable[[httpx.Request], httpx.Response]


def bitbucket_client(handler: Handler) -> BitbucketClient:
    return BitbucketClient(http_client=httpx.AsyncClient(base_url=API_BASE, transport=httpx.MockTransport(handler)))


def error_response(status: int, message: str) -> httpx.Response:
    return httpx.Response(status, json={"type": "error", "error": {"message": message}})


def test_init_requires_token_or_client():
    with pytest.raises(ValueError, match="A token or an http client is required"):
        _ = BitbucketClient()


def test_build_auth():
    assert build_auth(token="access-token") == {"Authorization": "Bearer access-token"}
    assert isinstance(build_auth(token="app-password", username="acme-admin"), httpx.BasicAuth)


def test_error_message():
    assert error_message(error_response(400, "Invalid branch pattern")) == "Invalid branch pattern"
    assert error_message(httpx.Response(502, text="Bad Gateway")) == snapshot("Bitbucket API error: 502 Bad Gateway")


class TestAuth:
    async def test_validate_auth(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/2.0/user"
            return httpx.Response(200, json={"display_name": "Acme Admin", "username": "acme-admin"})

        async with bitbucket_client(handler) as client:
            assert (await client.validate_auth()).model_dump() == snapshot({"valid": True, "user": "Acme Admin"})

    async def test_validate_auth_rejected(self):
        async with bitbucket_client(lambda _: error_response(401, "Invalid credentials")) as client:
            with pytest.raises(AuthenticationError, match="Invalid credentials"):
                _ = await client.validate_auth()

    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        async with bitbucket_client(handler) as client:
            with pytest.raises(PlatformApiError, match="connection refused"):
                _ = await client.validate_auth()


class TestRepository:
    async def test_default_branch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/2.0/repositories/acme/widgets"
            return httpx.Response(200, json={"mainbranch": {"name": "trunk", "type": "branch"}})

        async with bitbucket_client(handler) as client:
            assert await client.get_default_branch(workspace="acme", repo_slug="widgets") == "trunk"

    async def test_default_branch_fallback(self):
        async with bitbucket_client(lambda _: httpx.Response(200, json={"mainbranch": None})) as client:
            assert await client.get_default_branch(workspace="acme", repo_slug="widgets") == "main"

    @pytest.mark.parametrize(
        ("permission", "admin", "push"),
        [("admin", True, True), ("write", False, True), ("read", False, False)],
    )
    async def test_permissions(self, permission: str, admin: bool, push: bool):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/2.0/user/permissions/repositories"
            assert request.url.params["q"] == 'repository.full_name="acme/widgets"'
            return httpx.Response(200, json={"values": [{"permission": permission}]})

        async with bitbucket_client(handler) as client:
            permissions = await client.get_repository_permissions(workspace="acme", repo_slug="widgets")

        assert (permissions.admin, permissions.push) == (admin, push)

    async def test_permissions_without_access(self):
        async with bitbucket_client(lambda _: httpx.Response(200, json={"values": []})) as client:
            assert (await client.get_repository_permissions(workspace="acme", repo_slug="widgets")).admin is False

    async def test_update_repository(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"full_name": "acme/widgets"})

        async with bitbucket_client(handler) as client:
            await client.update_repository(workspace="acme", repo_slug="widgets", settings={"fork_policy": "no_public_forks"})

        assert requests[0].method == "PUT"
        assert json.loads(requests[0].content) == {"fork_policy": "no_public_forks"}


class TestBranchRestrictions:
    async def test_create(self):
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/2.0/repositories/acme/widgets/branch-restrictions"
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 1})

        restriction = BranchRestriction(kind=RestrictionKind.REQUIRE_APPROVALS, pattern="main", value=1)

        async with bitbucket_client(handler) as client:
            await client.create_branch_restriction(workspace="acme", repo_slug="widgets", restriction=restriction)

        assert bodies == snapshot(
            [{"kind": "require_approvals_to_merge", "pattern": "main", "value": 1, "branch_match_kind": "glob"}]
        )

    async def test_conflict_is_already_exists(self):
        restriction = BranchRestriction(kind=RestrictionKind.PREVENT_DELETION, pattern="main")

        async with bitbucket_client(lambda _: error_response(409, "Conflict")) as client:
            with pytest.raises(AlreadyExistsError):
                await client.create_branch_restriction(workspace="acme", repo_slug="widgets", restriction=restriction)

    async def test_already_exists_message(self):
        restriction = BranchRestriction(kind=RestrictionKind.PREVENT_FORCE_PUSH, pattern="main")

        async with bitbucket_client(lambda _: error_response(400, "A restriction of this kind already exists")) as client:
            with pytest.raises(AlreadyExistsError):
                await client.create_branch_restriction(workspace="acme", repo_slug="widgets", restriction=restriction)


class TestPipelines:
    async def test_enable_pipelines(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "PUT"
            assert request.url.path == "/2.0/repositories/acme/widgets/pipelines_config"
            return httpx.Response(204)

        async with bitbucket_client(handler) as client:
            await client.enable_pipelines(workspace="acme", repo_slug="widgets")

    async def test_create_variable(self):
        bodies: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={"uuid": "{new}", "key": "NPM_TOKEN", "secured": True})

        async with bitbucket_client(handler) as client:
            result = await client.set_pipeline_variable(workspace="acme", repo_slug="widgets", key="NPM_TOKEN", value="npm_s3cret")

        assert result == "created"
        assert bodies == [{"key": "NPM_TOKEN", "value": "npm_s3cret", "secured": True}]

    async def test_update_existing_variable(self):
        requests: list[tuple[str, str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append((request.method, request.url.path))

            if request.method == "POST":
                return error_response(409, "A variable with the key NPM_TOKEN already exists")

            if request.method == "GET" and request.url.params.get("page") != "2":
                return httpx.Response(
                    200,
                    json={
                        "values": [{"uuid": "{other}", "key": "OTHER", "secured": False}],
                        "next": f"{API_BASE}/repositories/acme/widgets/pipelines_config/variables/?page=2",
                    },
                )

            if request.method == "GET":
                return httpx.Response(200, json={"values": [{"uuid": "{existing}", "key": "NPM_TOKEN", "secured": True}]})

            return httpx.Response(200, json={"uuid": "{existing}", "key": "NPM_TOKEN", "secured": True})

        async with bitbucket_client(handler) as client:
            result = await client.set_pipeline_variable(workspace="acme", repo_slug="widgets", key="NPM_TOKEN", value="npm_s3cret")

        assert result == "updated"
        assert requests[-1] == ("PUT", "/2.0/repositories/acme/widgets/pipelines_config/variables/{existing}")

    async def test_update_missing_variable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return error_response(409, "Conflict")
            return httpx.Response(200, json={"values": []})

        async with bitbucket_client(handler) as client:
            with pytest.raises(PlatformApiError, match="was not found"):
                _ = await client.set_pipeline_variable(workspace="acme", repo_slug="widgets", key="NPM_TOKEN", value="npm_s3cret")
