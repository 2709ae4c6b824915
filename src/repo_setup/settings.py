import logging
import os
from collections.abc import Mapping
from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from repo_setup.platforms.remote import Platform

DEFAULT_SSH_ALIASES: dict[Platform, str] = {
    Platform.GITHUB: "github-personal",
    Platform.BITBUCKET: "bitbucket-personal",
}


class SetupSettings(BaseModel):
    """Process-wide settings, built once at startup and passed down explicitly."""

    model_config = ConfigDict(frozen=True)

    debug: bool = Field(default=False, description="Print stack traces on fatal errors.")
    log_level: str = Field(default="WARNING", description="The level for the package logger.")
    ssh_aliases: dict[Platform, str] = Field(
        default_factory=lambda: dict(DEFAULT_SSH_ALIASES),
        description="The SSH host alias tried when a push to the canonical host fails.",
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Self:
        if environ is None:
            environ = os.environ

        debug = bool(environ.get("DEBUG"))

        return cls(
            debug=debug,
            log_level="DEBUG" if debug else environ.get("REPO_SETUP_LOG_LEVEL", "WARNING").upper(),
            ssh_aliases={
                Platform.GITHUB: environ.get("REPO_SETUP_GITHUB_SSH_ALIAS") or DEFAULT_SSH_ALIASES[Platform.GITHUB],
                Platform.BITBUCKET: environ.get("REPO_SETUP_BITBUCKET_SSH_ALIAS") or DEFAULT_SSH_ALIASES[Platform.BITBUCKET],
            },
        )

    @property
    def logging_level(self) -> int:
        return logging.getLevelNamesMapping().get(self.log_level, logging.WARNING)
