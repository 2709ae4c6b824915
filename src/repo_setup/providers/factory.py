import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from rich.console import Console

from repo_setup.clients.bitbucket import BitbucketClient
from repo_setup.clients.github import GitHubClient
from repo_setup.errors import MissingCredentialsError
from repo_setup.platforms.remote import Platform
from repo_setup.providers.base import PlatformProvider
from repo_setup.providers.bitbucket import BitbucketProvider
from repo_setup.providers.github import GitHubProvider

GITHUB_TOKEN_VARIABLE = "GITHUB_TOKEN"
GITHUB_SCOPES = "repo, admin:repo_hook, write:packages"
GITHUB_TOKEN_URL = "https://github.com/settings/tokens"

BITBUCKET_ACCESS_TOKEN_VARIABLE = "BITBUCKET_ACCESS_TOKEN"
BITBUCKET_TOKEN_VARIABLE = "BITBUCKET_TOKEN"
BITBUCKET_USERNAME_VARIABLE = "BITBUCKET_USERNAME"
BITBUCKET_SCOPES = "Account (Read), Repositories (Admin), Pipelines (Read/Write)"
BITBUCKET_TOKEN_URL = "https://bitbucket.org/account/settings/app-passwords/"


class Credentials(BaseModel):
    """Platform credentials read from the environment. Never logged or persisted."""

    model_config = ConfigDict(frozen=True)

    token: SecretStr = Field(description="The access token or app password.")
    username: str | None = Field(default=None, description="The username for basic auth (Bitbucket app passwords).")


def github_credentials(environ: Mapping[str, str]) -> Credentials:
    if not (token := environ.get(GITHUB_TOKEN_VARIABLE)):
        raise MissingCredentialsError(
            platform="GitHub",
            variables=GITHUB_TOKEN_VARIABLE,
            scopes=GITHUB_SCOPES,
            create_url=GITHUB_TOKEN_URL,
        )

    return Credentials(token=SecretStr(token))


def bitbucket_credentials(environ: Mapping[str, str]) -> Credentials:
    """Prefer an access token (bearer auth), then a username and app password (basic auth)."""

    if token := environ.get(BITBUCKET_ACCESS_TOKEN_VARIABLE):
        return Credentials(token=SecretStr(token))

    if (token := environ.get(BITBUCKET_TOKEN_VARIABLE)) and (username := environ.get(BITBUCKET_USERNAME_VARIABLE)):
        return Credentials(token=SecretStr(token), username=username)

    raise MissingCredentialsError(
        platform="Bitbucket",
        variables=f"{BITBUCKET_ACCESS_TOKEN_VARIABLE} (or {BITBUCKET_TOKEN_VARIABLE} + {BITBUCKET_USERNAME_VARIABLE})",
        scopes=BITBUCKET_SCOPES,
        create_url=BITBUCKET_TOKEN_URL,
    )


def create_platform_provider(
    platform: Platform,
    environ: Mapping[str, str] | None = None,
    console: Console | None = None,
) -> PlatformProvider:
    """Create the provider for `platform`, authenticated from the environment.

    Raises:
        MissingCredentialsError: If the platform's credential variables are not set.
    """

    if environ is None:
        environ = os.environ

    if platform == Platform.GITHUB:
        credentials = github_credentials(environ)
        return GitHubProvider(client=GitHubClient(token=credentials.token.get_secret_value()), console=console)

    credentials = bitbucket_credentials(environ)
    return BitbucketProvider(
        client=BitbucketClient(token=credentials.token.get_secret_value(), username=credentials.username),
        console=console,
    )
