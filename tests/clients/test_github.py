import base64
from types import SimpleNamespace
from typing import Any

import httpx
import pytest
from githubkit.exception import RequestFailed
from githubkit.response import Response
from inline_snapshot import snapshot
from nacl import encoding, public

from repo_setup.clients.github import GitHubClient, encrypt_secret
from repo_setup.errors import AlreadyExistsError, AuthenticationError, PlatformApiError


def request_failed(status: int, body: dict[str, Any] | None = None) -> RequestFailed:
    request = httpx.Request("GET", "https://api.github.com/repos/acme/widgets")
    return RequestFailed(Response(httpx.Response(status, json=body or {}, request=request), Any))


def parsed(**fields: Any) -> SimpleNamespace:
    return SimpleNamespace(parsed_data=SimpleNamespace(**fields))


def githubkit_stub(**namespaces: SimpleNamespace) -> Any:  # noqa: ANN401
    """A githubkit client exposing only the REST namespaces a test needs."""

    return SimpleNamespace(rest=SimpleNamespace(**namespaces))


def test_init_requires_token_or_client():
    with pytest.raises(ValueError, match="A token or a githubkit client is required"):
        _ = GitHubClient()


def test_init_with_token():
    assert GitHubClient(token="ghp_token").githubkit_client is not None


class TestAuth:
    async def test_validate_auth(self):
        async def async_get_authenticated(**_: Any):
            return parsed(login="octocat")

        client = GitHubClient(githubkit_client=githubkit_stub(users=SimpleNamespace(async_get_authenticated=async_get_authenticated)))

        assert (await client.validate_auth()).model_dump() == snapshot({"valid": True, "user": "octocat"})

    async def test_validate_auth_rejected(self):
        async def async_get_authenticated(**_: Any):
            raise request_failed(401, {"message": "Bad credentials"})

        client = GitHubClient(githubkit_client=githubkit_stub(users=SimpleNamespace(async_get_authenticated=async_get_authenticated)))

        with pytest.raises(AuthenticationError, match="Bad credentials"):
            _ = await client.validate_auth()


class TestRepository:
    async def test_default_branch_and_permissions(self):
        async def async_get(owner: str, repo: str):
            assert (owner, repo) == ("acme", "widgets")
            return parsed(default_branch="trunk", permissions=SimpleNamespace(admin=True, push=True, pull=True))

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_get=async_get)))

        assert await client.get_default_branch(owner="acme", repo="widgets") == "trunk"
        assert (await client.get_repository_permissions(owner="acme", repo="widgets")).model_dump() == snapshot(
            {"admin": True, "push": True, "pull": True}
        )

    async def test_permissions_missing(self):
        async def async_get(**_: Any):
            return parsed(default_branch="main", permissions=None)

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_get=async_get)))

        assert (await client.get_repository_permissions(owner="acme", repo="widgets")).admin is False

    async def test_update_repository(self):
        sent: dict[str, Any] = {}

        async def async_update(owner: str, repo: str, data: dict[str, Any]):
            sent.update(data)
            return parsed()

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_update=async_update)))

        await client.update_repository(owner="acme", repo="widgets", settings={"allow_merge_commit": False})

        assert sent == {"allow_merge_commit": False}

    async def test_server_error_is_platform_error(self):
        async def async_update(**_: Any):
            raise request_failed(500, {"message": "Server Error"})

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_update=async_update)))

        with pytest.raises(PlatformApiError, match="status: 500") as exc_info:
            await client.update_repository(owner="acme", repo="widgets", settings={})

        assert exc_info.value.status == 500
        assert not isinstance(exc_info.value, AlreadyExistsError)


class TestRulesets:
    async def test_list_ruleset_names(self):
        async def async_get_repo_rulesets(**_: Any):
            return SimpleNamespace(parsed_data=[SimpleNamespace(name="Protect main"), SimpleNamespace(name="Tags")])

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_get_repo_rulesets=async_get_repo_rulesets)))

        assert await client.list_ruleset_names(owner="acme", repo="widgets") == ["Protect main", "Tags"]

    async def test_list_ruleset_names_not_found(self):
        async def async_get_repo_rulesets(**_: Any):
            raise request_failed(404, {"message": "Not Found"})

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_get_repo_rulesets=async_get_repo_rulesets)))

        assert await client.list_ruleset_names(owner="acme", repo="widgets") == []

    async def test_create_ruleset_already_exists(self):
        async def async_create_repo_ruleset(**_: Any):
            raise request_failed(422, {"message": "Validation Failed", "errors": ["Name must be unique"]})

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_create_repo_ruleset=async_create_repo_ruleset)))

        with pytest.raises(AlreadyExistsError):
            await client.create_ruleset(owner="acme", repo="widgets", ruleset={"name": "Protect main"})

    async def test_create_ruleset_validation_error(self):
        async def async_create_repo_ruleset(**_: Any):
            raise request_failed(422, {"message": "Validation Failed", "errors": ["Invalid rule 'pull_request'"]})

        client = GitHubClient(githubkit_client=githubkit_stub(repos=SimpleNamespace(async_create_repo_ruleset=async_create_repo_ruleset)))

        with pytest.raises(PlatformApiError, match="Invalid rule") as exc_info:
            await client.create_ruleset(owner="acme", repo="widgets", ruleset={"name": "Protect main"})

        assert not isinstance(exc_info.value, AlreadyExistsError)


class TestActions:
    async def test_actions_enabled(self):
        async def async_get_github_actions_permissions_repository(**_: Any):
            return parsed(enabled=False)

        actions = SimpleNamespace(async_get_github_actions_permissions_repository=async_get_github_actions_permissions_repository)
        client = GitHubClient(githubkit_client=githubkit_stub(actions=actions))

        assert await client.actions_enabled(owner="acme", repo="widgets") is False

    async def test_enable_actions(self):
        sent: dict[str, Any] = {}

        async def async_set_github_actions_permissions_repository(owner: str, repo: str, data: dict[str, Any]):
            sent.update(data)
            return parsed()

        actions = SimpleNamespace(async_set_github_actions_permissions_repository=async_set_github_actions_permissions_repository)
        client = GitHubClient(githubkit_client=githubkit_stub(actions=actions))

        await client.enable_actions(owner="acme", repo="widgets")

        assert sent == snapshot({"enabled": True, "allowed_actions": "all"})


class TestSecrets:
    @pytest.fixture
    def private_key(self) -> public.PrivateKey:
        return public.PrivateKey.generate()

    def test_encrypt_secret(self, private_key: public.PrivateKey):
        public_key = private_key.public_key.encode(encoding.Base64Encoder).decode("utf-8")

        sealed = encrypt_secret(public_key=public_key, secret_value="npm_s3cret")

        assert public.SealedBox(private_key).decrypt(base64.b64decode(sealed)) == b"npm_s3cret"

    @pytest.mark.parametrize(("secret_exists", "expected"), [(False, "created"), (True, "updated")])
    async def test_set_actions_secret(self, private_key: public.PrivateKey, secret_exists: bool, expected: str):
        public_key = private_key.public_key.encode(encoding.Base64Encoder).decode("utf-8")
        sent: dict[str, Any] = {}

        async def async_get_repo_secret(**_: Any):
            if not secret_exists:
                raise request_failed(404, {"message": "Not Found"})
            return parsed(name="NPM_TOKEN")

        async def async_get_repo_public_key(**_: Any):
            return parsed(key=public_key, key_id="key-1")

        async def async_create_or_update_repo_secret(owner: str, repo: str, secret_name: str, data: dict[str, Any]):
            sent.update(data, secret_name=secret_name)
            return parsed()

        actions = SimpleNamespace(
            async_get_repo_secret=async_get_repo_secret,
            async_get_repo_public_key=async_get_repo_public_key,
            async_create_or_update_repo_secret=async_create_or_update_repo_secret,
        )
        client = GitHubClient(githubkit_client=githubkit_stub(actions=actions))

        result = await client.set_actions_secret(owner="acme", repo="widgets", name="NPM_TOKEN", value="npm_s3cret")

        assert result == expected
        assert sent["secret_name"] == "NPM_TOKEN"
        assert sent["key_id"] == "key-1"
        assert "npm_s3cret" not in sent["encrypted_value"]
        assert public.SealedBox(private_key).decrypt(base64.b64decode(sent["encrypted_value"])) == b"npm_s3cret"
