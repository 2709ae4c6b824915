from pathlib import Path

import click
from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

from repo_setup.errors import SetupError
from repo_setup.npm import TRUSTED_PUBLISHING_MIN_VERSION_TEXT, NpmCli, package_access_url
from repo_setup.platforms.detector import detect, read_origin_url
from repo_setup.platforms.remote import Platform, RemoteIdentity, normalize_ssh_alias, parse_remote_url
from repo_setup.project import PACKAGE_JSON, PackageManifest, load_package_manifest
from repo_setup.reporting import StepReporter
from repo_setup.settings import SetupSettings
from repo_setup.utilities.logging import get_logger
from repo_setup.utilities.prompts import ClickPrompter, Prompter
from repo_setup.workflows.analysis import RELEASE_WORKFLOW_NAMES, WorkflowAnalysis, find_release_workflow
from repo_setup.workflows.rewrite import update_workflow

logger = get_logger(__name__)

NPM_VERSION = "npm version"
PACKAGE = "Package"
REPOSITORY = "Repository"
RELEASE_WORKFLOW = "Release workflow"
REGISTRY = "npm registry"
UPDATE_WORKFLOW = "Update workflow"
TRUSTED_PUBLISHER = "Trusted publisher"

TRUSTED_PUBLISHERS_DOCS = "https://docs.npmjs.com/trusted-publishers"
GITHUB_OIDC_DOCS = (
    "https://docs.github.com/en/actions/deployment/security-hardening-your-deployments/about-security-hardening-with-openid-connect"
)
BITBUCKET_OIDC_DOCS = "https://support.atlassian.com/bitbucket-cloud/docs/deploy-with-oidc/"


class TrustedPublishingOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    cwd: Path = Field(description="The npm package directory.")
    force: bool = Field(default=False, description="Skip confirmation prompts.")
    dry_run: bool = Field(default=False, description="Show workflow changes without writing them.")


def secrets_url(identity: RemoteIdentity) -> str:
    if identity.platform == Platform.BITBUCKET:
        return f"https://bitbucket.org/{identity.owner}/{identity.repo}/admin/pipelines/repository-variables"

    return f"https://github.com/{identity.owner}/{identity.repo}/settings/secrets/actions"


def github_instructions(package_name: str, identity: RemoteIdentity, workflow_filename: str, environment: str | None = None) -> str:
    return f"""\
NPM Trusted Publishing Setup Instructions

Package: {package_name}
Repository: {identity.full_name}
Workflow: {workflow_filename}

Step 1: Configure Trusted Publisher on npmjs.com
1. Go to: {package_access_url(package_name)}
2. Scroll to the "Trusted Publisher" section
3. Click the "GitHub Actions" button
4. Fill in the form:
   - Organization/User: {identity.owner}
   - Repository: {identity.repo}
   - Workflow filename: {workflow_filename}
   - Environment: {environment or "(leave empty)"}
5. Click "Set up connection"

Step 2: Verify Workflow Configuration
Your workflow should have:
   permissions:
     id-token: write
     contents: read
And publish with:
   npm publish --provenance

Step 3: Clean Up (Optional)
You can now safely remove the NPM_TOKEN secret from:
{secrets_url(identity)}

Step 4: Test
Trigger your release workflow and verify that the package publishes and shows a provenance badge.

Documentation
- npm Trusted Publishing: {TRUSTED_PUBLISHERS_DOCS}
- GitHub OIDC: {GITHUB_OIDC_DOCS}
"""


def bitbucket_instructions(package_name: str, identity: RemoteIdentity, environment: str | None = None) -> str:
    return f"""\
NPM Trusted Publishing Setup Instructions (Bitbucket)

Package: {package_name}
Repository: {identity.full_name}
Pipeline: bitbucket-pipelines.yml

Step 1: Configure Trusted Publisher on npmjs.com
1. Go to: {package_access_url(package_name)}
2. Scroll to the "Trusted Publisher" section
3. Click the "Bitbucket Pipelines" button
4. Fill in the form:
   - Workspace: {identity.owner}
   - Repository: {identity.repo}
   - Pipeline UUID: (get it from the Bitbucket repository settings)
   - Environment: {environment or "(leave empty)"}
5. Click "Set up connection"

Step 2: Verify Pipeline Configuration
Your publish step should have:
   oidc: true
And use the OIDC token:
   npm config set //registry.npmjs.org/:_authToken "${{BITBUCKET_STEP_OIDC_TOKEN}}"
   npm publish --provenance --access public

Step 3: Clean Up (Optional)
You can now safely remove the NPM_TOKEN variable from:
{secrets_url(identity)}

Step 4: Test
Trigger a release by pushing a version tag:
   git tag v1.0.0
   git push origin v1.0.0

Documentation
- npm Trusted Publishing: {TRUSTED_PUBLISHERS_DOCS}
- Bitbucket OIDC: {BITBUCKET_OIDC_DOCS}
"""


def trusted_publisher_instructions(package_name: str, identity: RemoteIdentity, workflow_filename: str) -> str:
    if identity.platform == Platform.BITBUCKET:
        return bitbucket_instructions(package_name, identity)

    return github_instructions(package_name, identity, workflow_filename)


def detect_repository(cwd: Path) -> RemoteIdentity:
    """Detect the repository without touching the git config; SSH host aliases are resolved as Bitbucket."""

    remote_url = read_origin_url(cwd)

    if remote_url and (normalized := normalize_ssh_alias(remote_url, Platform.BITBUCKET)):
        return parse_remote_url(normalized)

    return detect(cwd)


class TrustedPublishing:
    """Migrates an npm package's release workflow to OIDC trusted publishing."""

    options: TrustedPublishingOptions
    settings: SetupSettings
    prompter: Prompter
    console: Console
    reporter: StepReporter
    npm: NpmCli

    def __init__(
        self,
        options: TrustedPublishingOptions,
        settings: SetupSettings | None = None,
        prompter: Prompter | None = None,
        console: Console | None = None,
        npm: NpmCli | None = None,
    ):
        self.options = options
        self.settings = settings or SetupSettings()
        self.prompter = prompter or ClickPrompter()
        self.console = console or Console()
        self.reporter = StepReporter(console=self.console)
        self.npm = npm or NpmCli(cwd=options.cwd)

    def _fail(self, step: str, error: SetupError | ValueError) -> int:
        self.reporter.error(step, str(error))
        if self.settings.debug:
            self.console.print_exception()
        return 1

    def setup(self) -> int:
        """Update the release workflow and walk through the npmjs.com side. Returns the exit code."""

        self.reporter.header("NPM Trusted Publishing Setup")

        step = NPM_VERSION
        try:
            if not self._check_npm_version():
                return 0

            step = PACKAGE
            if (manifest := self._check_manifest()) is None:
                return 1

            step = REPOSITORY
            identity = detect_repository(self.options.cwd)
            self.reporter.success(REPOSITORY, f"Repository: {identity.full_name}")

            step = RELEASE_WORKFLOW
            if (workflow := self._find_workflow()) is None:
                return 1

            step = REGISTRY
            self._check_registry(manifest)

            self._show_status(workflow)

            step = UPDATE_WORKFLOW
            if not self.options.force and not self.prompter.confirm("Update workflow file for OIDC trusted publishing?", default=True):
                self.reporter.info(UPDATE_WORKFLOW, "Operation cancelled")
                return 0

            self._update_workflow(workflow)

            step = TRUSTED_PUBLISHER
            self._configure_trusted_publisher(manifest, identity, workflow)
        except (SetupError, ValueError) as e:
            return self._fail(step, e)

        return 0

    def _check_npm_version(self) -> bool:
        support = self.npm.check_trusted_publishing_support()

        if support.supported:
            self.reporter.success(NPM_VERSION, f"npm {support.version} supports OIDC trusted publishing")
            return True

        self.reporter.warning(
            NPM_VERSION,
            f"npm {support.version} detected, OIDC trusted publishing requires npm >= {support.min_required}",
            remediation="npm install -g npm@latest",
        )
        self.reporter.note("Your CI workflow uses its own npm, so setup can continue.")

        if self.options.force or self.prompter.confirm("Continue with setup anyway?", default=True):
            return True

        self.reporter.info(NPM_VERSION, "Setup cancelled")
        return False

    def _check_manifest(self) -> PackageManifest | None:
        if (manifest := load_package_manifest(self.options.cwd)) is None:
            self.reporter.error(PACKAGE, f"No {PACKAGE_JSON} found", remediation="Run this command from your npm package directory")
            return None

        if manifest.private:
            self.reporter.error(PACKAGE, "Package is marked as private", remediation='Set "private": false in package.json to enable publishing')
            return None

        self.reporter.success(PACKAGE, f"{manifest.name} is public and publishable")
        return manifest

    def _find_workflow(self) -> WorkflowAnalysis | None:
        if (workflow := find_release_workflow(self.options.cwd)) is None:
            self.reporter.error(
                RELEASE_WORKFLOW,
                "No release workflow found",
                remediation=f"Create a workflow that runs npm publish (looking for: {', '.join(RELEASE_WORKFLOW_NAMES[::2])})",
            )
            return None

        if workflow.publishes:
            self.reporter.success(RELEASE_WORKFLOW, f"Found {workflow.filename} with npm publish commands")
        else:
            self.reporter.warning(RELEASE_WORKFLOW, f"Found {workflow.filename} without npm publish commands (it may use reusable workflows)")

        return workflow

    def _check_registry(self, manifest: PackageManifest) -> None:
        if self.npm.package_exists(manifest.name):
            self.reporter.success(REGISTRY, f'Package "{manifest.name}" exists on npm')
            return

        self.reporter.warning(
            REGISTRY,
            f'Package "{manifest.name}" is not yet published to npm; publish it once before configuring trusted publishing',
            remediation="npm publish --access public",
        )

    def _show_status(self, workflow: WorkflowAnalysis) -> None:
        self.console.print()
        self.console.print("[bold]Current workflow status:[/bold]")
        self.reporter.note(f"id-token permission: {'present' if workflow.has_id_token_permission else 'missing'}")
        self.reporter.note(f"NPM_TOKEN usage: {'found' if workflow.has_legacy_token_secret else 'not used'}")

        if workflow.uses_release_automation:
            self.reporter.note("Publishing method: semantic-release")
            self.reporter.note(f"NPM_CONFIG_PROVENANCE: {'present' if workflow.has_provenance_config else 'missing'}")
        else:
            self.reporter.note(f"--provenance flag: {'present' if workflow.has_provenance_config else 'missing'}")

        self.console.print()

    def _update_workflow(self, workflow: WorkflowAnalysis) -> None:
        result = update_workflow(workflow.path, dry_run=self.options.dry_run)

        if not result.updated:
            self.reporter.info(UPDATE_WORKFLOW, "Workflow already configured for OIDC")
            return

        for change in result.changes:
            self.reporter.note(change)

        if self.options.dry_run:
            self.reporter.info(UPDATE_WORKFLOW, f"Would make {len(result.changes)} change(s) to {workflow.filename}")
        else:
            self.reporter.success(UPDATE_WORKFLOW, f"Updated {workflow.filename}")

    def _configure_trusted_publisher(self, manifest: PackageManifest, identity: RemoteIdentity, workflow: WorkflowAnalysis) -> None:
        instructions = trusted_publisher_instructions(manifest.name, identity, workflow.filename)
        self.console.print(Panel(escape(instructions), title="npmjs.com", border_style="cyan"))

        url = package_access_url(manifest.name)

        if not self.options.force and not self.options.dry_run and self.prompter.confirm(f"Open {url} in your browser?", default=True):
            if click.launch(url) != 0:
                self.reporter.note(f"Could not open a browser, open manually: {url}")

        self.reporter.info(TRUSTED_PUBLISHER, "Finish the connection on npmjs.com")
        self.reporter.note(f"Then commit and push {workflow.filename} and trigger a release.")

    def status(self) -> int:
        """Report npm support, package facts, repository and workflow readiness. Returns the exit code."""

        self.reporter.header("NPM Trusted Publishing Status")

        try:
            support = self.npm.check_trusted_publishing_support()
            self.console.print(f"npm version: {escape(support.version)}")
            self.reporter.note(
                "OIDC support: " + ("supported" if support.supported else f"requires npm >= {TRUSTED_PUBLISHING_MIN_VERSION_TEXT}")
            )

            manifest = load_package_manifest(self.options.cwd)
            if manifest is None:
                self.console.print(f"\nNo {PACKAGE_JSON} found")
            else:
                self.console.print(f"\nPackage: {escape(manifest.name)}")
                self.reporter.note(f"Version: {manifest.version}")
                self.reporter.note(f"Public: {'yes' if manifest.is_public else 'no (private)'}")
                self.reporter.note(f"Scoped: {f'yes ({manifest.scope})' if manifest.is_scoped else 'no'}")
                self.reporter.note(f"On npm: {'published' if self.npm.package_exists(manifest.name) else 'not yet published'}")

            try:
                identity = detect_repository(self.options.cwd)
            except SetupError as e:
                logger.info(f"Could not detect repository: {e}")
            else:
                self.console.print(f"\nRepository: {escape(identity.full_name)}")

            workflow = find_release_workflow(self.options.cwd)
        except (SetupError, ValueError) as e:
            return self._fail("Status", e)

        if workflow is None:
            self.console.print("\n[yellow]No release workflow found[/yellow]")
            self.reporter.note(f"Looking for: {', '.join(RELEASE_WORKFLOW_NAMES[::2])} or bitbucket-pipelines.yml")
            return 0

        self.console.print(f"\nRelease workflow: {escape(workflow.filename)}")
        self.reporter.note(f"id-token permission: {'configured' if workflow.has_id_token_permission else 'missing'}")
        self.reporter.note(f"NPM_TOKEN secret: {'still in use' if workflow.has_legacy_token_secret else 'not used'}")
        if workflow.uses_release_automation:
            self.reporter.note("Publishing method: semantic-release")
        for command in workflow.publish_commands:
            marker = "ok" if "--provenance" in command or "semantic-release" in command else "needs --provenance"
            self.reporter.note(f"{command} [{marker}]")

        self.console.print("\n[bold]Overall status:[/bold]")
        if issues := workflow.readiness_issues():
            self.console.print("[yellow]Workflow needs updates for OIDC trusted publishing[/yellow]")
            for issue in issues:
                self.reporter.note(f"- {issue}")
            self.reporter.note('Run "repo-setup trusted-publishing setup" to configure')
        else:
            self.console.print("[green]Workflow is configured for OIDC trusted publishing[/green]")
            if manifest is not None:
                self.reporter.note(f"Make sure the trusted publisher is configured on npmjs.com: {package_access_url(manifest.name)}")

        return 0
