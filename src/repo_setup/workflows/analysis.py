import re
from pathlib import Path

from pydantic import BaseModel, Field

from repo_setup.platforms.remote import Platform

BITBUCKET_PIPELINES_FILE = "bitbucket-pipelines.yml"
GITHUB_WORKFLOWS_DIR = Path(".github") / "workflows"

RELEASE_WORKFLOW_NAMES = [
    "release.yml",
    "release.yaml",
    "publish.yml",
    "publish.yaml",
    "npm-publish.yml",
    "npm-publish.yaml",
    "ci.yml",
    "ci.yaml",
]

SEMANTIC_RELEASE_COMMAND = "npx semantic-release (uses @semantic-release/npm)"

PUBLISH_COMMAND_PATTERN = re.compile(r"npm[ \t]+publish(?![\w-])[^\n]*")
PROVENANCE_FLAG = "--provenance"
PROVENANCE_ENV_PATTERN = re.compile(r"NPM_CONFIG_PROVENANCE:\s*['\"]?true", re.IGNORECASE)
SEMANTIC_RELEASE_PATTERN = re.compile(r"semantic-release", re.IGNORECASE)

ID_TOKEN_PATTERN = re.compile(r"id-token:\s*write", re.IGNORECASE)
GITHUB_LEGACY_TOKEN_PATTERN = re.compile(r"^[^#\n]*\$\{\{\s*secrets\.NPM_TOKEN\s*\}\}", re.IGNORECASE | re.MULTILINE)

OIDC_STEP_FLAG_PATTERN = re.compile(r"oidc:\s*true", re.IGNORECASE)
OIDC_STEP_TOKEN = "BITBUCKET_STEP_OIDC_TOKEN"
BITBUCKET_LEGACY_TOKEN_PATTERN = re.compile(r"\$(?:\{NPM_TOKEN\}|NPM_TOKEN(?!\w))")


class WorkflowAnalysis(BaseModel):
    """What a CI workflow or pipeline file says about npm OIDC publishing readiness.

    Derived by pattern matching the raw file text, so matches are heuristic.
    """

    path: Path = Field(description="The path to the workflow file.")
    filename: str = Field(description="The file name, which selects the platform dialect.")
    platform: Platform = Field(description="The CI dialect of the file.")
    has_id_token_permission: bool = Field(description="Whether the file grants an OIDC identity token.")
    has_legacy_token_secret: bool = Field(description="Whether an uncommented long-lived NPM_TOKEN is still referenced.")
    publish_commands: list[str] = Field(default_factory=list, description="The publish commands found in the file.")
    uses_release_automation: bool = Field(default=False, description="Whether semantic-release publishes the package.")
    has_provenance_config: bool = Field(default=False, description="Whether provenance is requested.")
    has_oidc_step_flag: bool = Field(default=False, description="Bitbucket: whether a step sets `oidc: true`.")
    has_oidc_step_token: bool = Field(default=False, description="Bitbucket: whether the step OIDC token is used.")

    @property
    def publishes(self) -> bool:
        return bool(self.publish_commands)

    def readiness_issues(self) -> list[str]:
        """What still stands between this file and OIDC trusted publishing."""

        issues: list[str] = []

        if not self.publishes:
            issues.append("No npm publish commands found (the workflow may use reusable workflows)")

        if not self.has_id_token_permission:
            issues.append("Missing id-token: write permission" if self.platform == Platform.GITHUB else "Missing oidc: true on the publish step")

        if not self.has_provenance_config:
            issues.append("Missing NPM_CONFIG_PROVENANCE: true" if self.uses_release_automation else "Missing --provenance on npm publish")

        if self.has_legacy_token_secret:
            issues.append("NPM_TOKEN still in use (can be removed after setup)")

        return issues

    @property
    def is_oidc_ready(self) -> bool:
        return not self.readiness_issues()


def dialect_for(path: Path) -> Platform:
    return Platform.BITBUCKET if path.name == BITBUCKET_PIPELINES_FILE else Platform.GITHUB


def find_publish_commands(content: str) -> list[str]:
    return [match.group(0).strip() for match in PUBLISH_COMMAND_PATTERN.finditer(content)]


def _analyze_github(path: Path, content: str) -> WorkflowAnalysis:
    uses_semantic_release = bool(SEMANTIC_RELEASE_PATTERN.search(content))

    publish_commands = find_publish_commands(content)
    if uses_semantic_release:
        publish_commands.append(SEMANTIC_RELEASE_COMMAND)

    return WorkflowAnalysis(
        path=path,
        filename=path.name,
        platform=Platform.GITHUB,
        has_id_token_permission=bool(ID_TOKEN_PATTERN.search(content)),
        has_legacy_token_secret=bool(GITHUB_LEGACY_TOKEN_PATTERN.search(content)),
        publish_commands=publish_commands,
        uses_release_automation=uses_semantic_release,
        has_provenance_config=bool(PROVENANCE_ENV_PATTERN.search(content)) or PROVENANCE_FLAG in content,
    )


def _analyze_bitbucket(path: Path, content: str) -> WorkflowAnalysis:
    has_oidc_step_flag = bool(OIDC_STEP_FLAG_PATTERN.search(content))

    return WorkflowAnalysis(
        path=path,
        filename=path.name,
        platform=Platform.BITBUCKET,
        # A Bitbucket step gets its identity token from the `oidc: true` flag.
        has_id_token_permission=has_oidc_step_flag,
        has_legacy_token_secret=bool(BITBUCKET_LEGACY_TOKEN_PATTERN.search(content)),
        publish_commands=find_publish_commands(content),
        has_provenance_config=PROVENANCE_FLAG in content or bool(PROVENANCE_ENV_PATTERN.search(content)),
        has_oidc_step_flag=has_oidc_step_flag,
        has_oidc_step_token=OIDC_STEP_TOKEN in content,
    )


def analyze_content(path: Path, content: str) -> WorkflowAnalysis:
    if dialect_for(path) == Platform.BITBUCKET:
        return _analyze_bitbucket(path, content)

    return _analyze_github(path, content)


def analyze_workflow(path: Path) -> WorkflowAnalysis:
    """Scan a workflow file for OIDC publishing markers. The dialect is chosen by file name."""

    return analyze_content(path, path.read_text(encoding="utf-8"))


def find_workflow_files(cwd: Path) -> list[Path]:
    """List GitHub Actions workflows (sorted by name) followed by the Bitbucket pipeline, when present."""

    files: list[Path] = []

    workflows_dir = cwd / GITHUB_WORKFLOWS_DIR
    if workflows_dir.is_dir():
        files.extend(sorted(path for path in workflows_dir.iterdir() if path.is_file() and path.suffix in (".yml", ".yaml")))

    if (pipeline := cwd / BITBUCKET_PIPELINES_FILE).is_file():
        files.append(pipeline)

    return files


def find_release_workflow(cwd: Path) -> WorkflowAnalysis | None:
    """Pick the workflow that publishes the package.

    Order: a Bitbucket pipeline that publishes, then publishing GitHub workflows by priority name,
    then any publishing GitHub workflow, then GitHub workflows by priority name, then the Bitbucket pipeline.
    """

    files = find_workflow_files(cwd)

    pipeline = next((path for path in files if path.name == BITBUCKET_PIPELINES_FILE), None)
    pipeline_analysis = analyze_workflow(pipeline) if pipeline else None

    if pipeline_analysis and pipeline_analysis.publishes:
        return pipeline_analysis

    github_analyses = [analyze_workflow(path) for path in files if path.name != BITBUCKET_PIPELINES_FILE]

    if publishing := [analysis for analysis in github_analyses if analysis.publishes]:
        for name in RELEASE_WORKFLOW_NAMES:
            if match := next((analysis for analysis in publishing if analysis.filename == name), None):
                return match
        return publishing[0]

    for name in RELEASE_WORKFLOW_NAMES:
        if match := next((analysis for analysis in github_analyses if analysis.filename == name), None):
            return match

    return pipeline_analysis
