from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class AuthResult(BaseModel):
    """The result of validating platform credentials."""

    valid: bool = Field(description="Whether the credentials are valid.")
    user: str = Field(description="The display name or login of the authenticated user.")


class RepositoryPermissions(BaseModel):
    """The authenticated user's permissions on a repository."""

    model_config = ConfigDict(frozen=True)

    admin: bool = Field(default=False, description="Whether the user can administer the repository.")
    push: bool = Field(default=False, description="Whether the user can push to the repository.")
    pull: bool = Field(default=True, description="Whether the user can read the repository.")


class RestrictionKind(StrEnum):
    REQUIRE_APPROVALS = "require_approvals_to_merge"
    REQUIRE_PASSING_BUILDS = "require_passing_builds_to_merge"
    PUSH = "push"
    PREVENT_FORCE_PUSH = "force"
    PREVENT_DELETION = "delete"


RESTRICTION_DESCRIPTIONS: dict[RestrictionKind, str] = {
    RestrictionKind.REQUIRE_APPROVALS: "Require {value} approval(s) before merging",
    RestrictionKind.REQUIRE_PASSING_BUILDS: "Require {value} passing build(s) before merging",
    RestrictionKind.PUSH: "Restrict direct pushes",
    RestrictionKind.PREVENT_FORCE_PUSH: "Block force pushes",
    RestrictionKind.PREVENT_DELETION: "Block branch deletion",
}


class BranchRestriction(BaseModel):
    """A single branch restriction descriptor."""

    model_config = ConfigDict(frozen=True)

    kind: RestrictionKind = Field(description="The kind of restriction.")
    pattern: str = Field(description="The branch name or pattern the restriction applies to.")
    value: int | None = Field(default=None, description="The numeric threshold for the restriction, if any.")
    branch_match_kind: Literal["glob", "branching_model"] = Field(default="glob", description="How `pattern` is matched.")

    def describe(self) -> str:
        return RESTRICTION_DESCRIPTIONS[self.kind].format(value=self.value)


OutcomeStatus = Literal["created", "already_exists", "failed"]


class RestrictionOutcome(BaseModel):
    """The result of creating one branch protection record."""

    label: str = Field(description="The restriction kind or ruleset name.")
    status: OutcomeStatus = Field(description="Whether the record was created, already existed, or failed.")
    message: str | None = Field(default=None, description="The error message when the record failed.")


SecretProvisionResult = Literal["created", "updated"]


class PipelineVariable(BaseModel):
    """A Bitbucket repository pipeline variable."""

    uuid: str = Field(description="The variable's UUID, including braces.")
    key: str = Field(description="The variable name.")
    secured: bool = Field(default=False, description="Whether the variable value is hidden.")
