import asyncio
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console

from repo_setup.errors import FileWriteConflict, GitOperationFailedError, InsufficientPermissionsError, SetupError
from repo_setup.local_repository import LocalRepository
from repo_setup.npm import NpmCli
from repo_setup.platforms.detector import detect, resolve_platform
from repo_setup.platforms.remote import Platform, RemoteIdentity, normalize_ssh_alias, parse_remote_url
from repo_setup.project import PACKAGE_JSON, PackageManifest, load_package_manifest, next_patch_version, write_package_version
from repo_setup.providers.base import PlatformProvider
from repo_setup.providers.factory import create_platform_provider
from repo_setup.reporting import StepReporter
from repo_setup.settings import SetupSettings
from repo_setup.utilities.logging import get_logger
from repo_setup.utilities.prompts import ClickPrompter, Prompter

logger = get_logger(__name__)

VERIFY_GIT_REPO = "Verify git repository"
AUTHENTICATE = "Authenticate"
DETECT_REPOSITORY = "Detect repository"
CHECK_ADMIN_ACCESS = "Check admin access"
RESOLVE_DEFAULT_BRANCH = "Resolve default branch"
CONFIRM = "Confirm"
CONFIGURE_SETTINGS = "Configure repository settings"
BRANCH_PROTECTION = "Create branch protection"
ENABLE_CI = "Enable CI"
NPM_TOKEN_GUIDANCE = "NPM token guidance"
CI_CONFIG_FILE = "Write CI config"
PUBLISHING_SECRET = "Provision NPM_TOKEN"
COMMIT_AND_PUSH = "Commit and push"
RELEASE_TAG = "Release tag"

NPM_TOKEN_NAME = "NPM_TOKEN"

CLONE_GUIDANCE = (
    "Clone your repository first (git clone git@github.com:<owner>/<repo>.git or "
    "git clone git@bitbucket.org:<workspace>/<repo>.git), then re-run from inside it. "
    "Multiple accounts? Use Host aliases in ~/.ssh/config."
)

type ProviderFactory = Callable[[Platform], PlatformProvider]


class SetupRunOptions(BaseModel):
    """The options for one setup run."""

    model_config = ConfigDict(frozen=True)

    cwd: Path = Field(description="A directory inside the repository to set up.")
    force: bool = Field(default=False, description="Skip every interactive question.")
    dry_run: bool = Field(default=False, description="Detect and report, but make no network mutations or file writes.")
    platform_override: str | None = Field(default=None, description="Force `github` or `bitbucket`.")


class RepositorySetup:
    """Drives a platform provider through the repository setup steps.

    Steps run in a fixed order. Failures up to and including the settings update end the run with exit code 1;
    later steps degrade to warnings with remediation in the summary.
    """

    options: SetupRunOptions
    settings: SetupSettings
    prompter: Prompter
    reporter: StepReporter
    console: Console
    provider_factory: ProviderFactory
    npm: NpmCli

    current_step: str

    def __init__(
        self,
        options: SetupRunOptions,
        settings: SetupSettings | None = None,
        prompter: Prompter | None = None,
        console: Console | None = None,
        provider_factory: ProviderFactory | None = None,
        npm: NpmCli | None = None,
    ):
        self.options = options
        self.settings = settings or SetupSettings()
        self.prompter = prompter or ClickPrompter()
        self.console = console or Console()
        self.reporter = StepReporter(console=self.console)
        self.provider_factory = provider_factory or (lambda platform: create_platform_provider(platform, console=self.console))
        self.npm = npm or NpmCli(cwd=options.cwd)
        self.current_step = VERIFY_GIT_REPO

    async def run(self) -> int:
        """Run every step and print the summary. Returns the process exit code."""

        if self.options.dry_run:
            self.reporter.header("Dry run: no changes will be made")

        try:
            exit_code = await self._run()
        except SetupError as e:
            self.reporter.error(self.current_step, str(e), remediation=CLONE_GUIDANCE if self.current_step == VERIFY_GIT_REPO else None)
            if self.settings.debug:
                self.console.print_exception()
            exit_code = 1
        except Exception as e:
            logger.debug("Unhandled error during setup", exc_info=True)
            self.reporter.error(self.current_step, f"Unexpected error: {e}")
            if self.settings.debug:
                self.console.print_exception()
            exit_code = 1

        self.reporter.print_summary()
        return exit_code

    def _start(self, step: str) -> None:
        logger.debug(f"Starting step: {step}")
        self.current_step = step

    async def _run(self) -> int:
        self._start(VERIFY_GIT_REPO)
        repository = LocalRepository.open(self.options.cwd)
        self.reporter.success(VERIFY_GIT_REPO, f"Git repository at {repository.root}")

        self._start(AUTHENTICATE)
        platform = resolve_platform(repository.root, self.options.platform_override)

        async with self.provider_factory(platform) as provider:
            auth = await provider.validate_auth()
            self.reporter.success(AUTHENTICATE, f"Authenticated to {provider.platform_name} as {auth.user}")

            self._start(DETECT_REPOSITORY)
            identity = self._detect_repository(repository, platform)
            self.reporter.success(DETECT_REPOSITORY, f"Repository: {identity.full_name}")
            owner, repo = identity.owner, identity.repo

            self._start(CHECK_ADMIN_ACCESS)
            permissions = await provider.check_repository_permissions(owner, repo)
            if not permissions.admin:
                raise InsufficientPermissionsError(owner=owner, repo=repo)
            self.reporter.success(CHECK_ADMIN_ACCESS, "Admin access confirmed")

            self._start(RESOLVE_DEFAULT_BRANCH)
            branch = await provider.get_default_branch(owner, repo)
            self.reporter.success(RESOLVE_DEFAULT_BRANCH, f"Default branch: {branch}")

            self._start(CONFIRM)
            if self.options.force:
                self.reporter.skipped(CONFIRM, "Confirmation skipped (--force)")
            elif self.prompter.confirm(f"Configure {provider.platform_name} repository {owner}/{repo} with best practices?", default=True):
                self.reporter.success(CONFIRM, "Confirmed")
            else:
                self.reporter.info(CONFIRM, "Operation cancelled")
                return 0

            self._start(CONFIGURE_SETTINGS)
            await self._configure_settings(provider, owner, repo)

            await self._create_branch_protection(provider, owner, repo, branch)
            await self._enable_ci(provider, owner, repo)

            manifest = self._load_manifest()

            self._npm_token_guidance(provider, owner, repo, manifest)
            self._materialize_ci_config(provider, repository)
            await self._provision_publishing_secret(provider, owner, repo, manifest)
            await self._commit_and_push(provider, repository)
            await self._release_tag(provider, repository, manifest)

            self.reporter.note(f"Check pipelines: {provider.get_pipelines_url(owner, repo)}")

        return 0

    def _detect_repository(self, repository: LocalRepository, platform: Platform) -> RemoteIdentity:
        """Detect owner and repository, normalizing a Bitbucket SSH host alias while doing so."""

        remote_url = repository.get_origin_url()
        normalized = normalize_ssh_alias(remote_url, platform) if remote_url and platform == Platform.BITBUCKET else None

        if normalized is None:
            return detect(repository.root, platform.value)

        self.reporter.note(f"Normalizing remote {remote_url} -> {normalized}")

        if self.options.dry_run:
            return parse_remote_url(normalized).model_copy(update={"platform": platform})

        with repository.remote_url_override(normalized):
            return detect(repository.root, platform.value)

    async def _configure_settings(self, provider: PlatformProvider, owner: str, repo: str) -> None:
        settings = provider.default_repository_settings()
        described = ", ".join(f"{key}={value}" for key, value in settings.items())

        if self.options.dry_run:
            self.reporter.info(CONFIGURE_SETTINGS, f"Would apply: {described}")
            return

        await provider.configure_repository_settings(owner, repo, settings)
        self.reporter.success(CONFIGURE_SETTINGS, f"Applied: {described}")

    async def _create_branch_protection(self, provider: PlatformProvider, owner: str, repo: str, branch: str) -> None:
        self._start(BRANCH_PROTECTION)

        if self.options.dry_run:
            self.reporter.info(BRANCH_PROTECTION, f'Would protect branch "{branch}"')
            return

        try:
            outcomes = await provider.create_branch_protection(owner, repo, branch)
        except SetupError as e:
            self.reporter.warning(BRANCH_PROTECTION, str(e), remediation=provider.get_settings_url(owner, repo))
            return

        for outcome in outcomes:
            self.reporter.note(f"{outcome.label}: {outcome.status.replace('_', ' ')}" + (f" ({outcome.message})" if outcome.message else ""))

        if failed := [outcome for outcome in outcomes if outcome.status == "failed"]:
            self.reporter.warning(
                BRANCH_PROTECTION,
                f"{len(failed)} of {len(outcomes)} restriction(s) failed on {branch}",
                remediation=provider.get_settings_url(owner, repo),
            )
        elif all(outcome.status == "already_exists" for outcome in outcomes):
            self.reporter.info(BRANCH_PROTECTION, f"Branch protection already in place on {branch}")
        else:
            self.reporter.success(BRANCH_PROTECTION, f"Protected branch {branch}")

    async def _enable_ci(self, provider: PlatformProvider, owner: str, repo: str) -> None:
        self._start(ENABLE_CI)

        if self.options.dry_run:
            self.reporter.info(ENABLE_CI, f"Would enable {provider.platform_name} CI")
            return

        try:
            enabled = await provider.enable_ci(owner, repo)
        except SetupError as e:
            self.reporter.warning(ENABLE_CI, str(e), remediation=f"Enable CI manually at {provider.get_settings_url(owner, repo)}")
            return

        if enabled:
            self.reporter.success(ENABLE_CI, f"{provider.platform_name} CI enabled")
        else:
            self.reporter.info(ENABLE_CI, f"{provider.platform_name} CI already enabled")

    def _load_manifest(self) -> PackageManifest | None:
        try:
            return load_package_manifest(self.options.cwd)
        except ValueError as e:
            logger.warning(f"Could not read {PACKAGE_JSON}: {e}")
            return None

    def _npm_token_guidance(self, provider: PlatformProvider, owner: str, repo: str, manifest: PackageManifest | None) -> None:
        self._start(NPM_TOKEN_GUIDANCE)

        if manifest is None:
            self.reporter.skipped(NPM_TOKEN_GUIDANCE, f"No {PACKAGE_JSON} found")
            return

        if manifest.private:
            self.reporter.skipped(NPM_TOKEN_GUIDANCE, "Private package, nothing is published to npm")
            return

        if self.options.dry_run:
            self.reporter.info(NPM_TOKEN_GUIDANCE, "Would print NPM token setup guidance")
            return

        provider.setup_npm_token_guidance(owner, repo)

        if manifest.name and not self.npm.package_exists(manifest.name):
            self.reporter.info(
                NPM_TOKEN_GUIDANCE,
                f"{manifest.name} is not on npm yet: publish it once with a token before switching to trusted publishing",
            )
            return

        self.reporter.info(NPM_TOKEN_GUIDANCE, "Printed NPM token setup guidance")

    def _materialize_ci_config(self, provider: PlatformProvider, repository: LocalRepository) -> None:
        """Write the generated CI file unless it is up to date or the user keeps their own."""

        self._start(CI_CONFIG_FILE)

        relative_path = provider.get_ci_config_file()
        path = repository.root / relative_path

        try:
            content = provider.render_ci_config(self.options.cwd)
        except ValueError as e:
            self.reporter.warning(CI_CONFIG_FILE, f"Could not generate {relative_path}: {e}")
            return

        try:
            if path.is_file():
                if path.read_text(encoding="utf-8") == content:
                    self.reporter.skipped(CI_CONFIG_FILE, f"{relative_path} already up to date")
                    return

                if self.options.dry_run:
                    self.reporter.info(CI_CONFIG_FILE, f"Would ask to overwrite {relative_path}")
                    return

                if not self.options.force and not self.prompter.confirm(
                    f"{relative_path} already exists. Overwrite with updated template?", default=False
                ):
                    raise FileWriteConflict(path=relative_path)

            if self.options.dry_run:
                self.reporter.info(CI_CONFIG_FILE, f"Would write {relative_path}")
                return

            path.parent.mkdir(parents=True, exist_ok=True)
            _ = path.write_text(content, encoding="utf-8")
        except FileWriteConflict:
            self.reporter.skipped(CI_CONFIG_FILE, f"Keeping existing {relative_path}")
            return
        except OSError as e:
            self.reporter.warning(CI_CONFIG_FILE, f"Could not write {relative_path}: {e}")
            return

        self.reporter.success(CI_CONFIG_FILE, f"Wrote {relative_path}")

    async def _provision_publishing_secret(
        self, provider: PlatformProvider, owner: str, repo: str, manifest: PackageManifest | None
    ) -> None:
        self._start(PUBLISHING_SECRET)

        if manifest is None:
            self.reporter.skipped(PUBLISHING_SECRET, f"No {PACKAGE_JSON} found")
            return

        if self.options.dry_run:
            self.reporter.info(PUBLISHING_SECRET, f"Would ask to store {NPM_TOKEN_NAME} as a {provider.secret_label}")
            return

        if self.options.force:
            self.reporter.skipped(PUBLISHING_SECRET, "Interactive step skipped (--force)")
            return

        if not self.prompter.confirm(f"Do you want to set up {NPM_TOKEN_NAME} as a secured repository {provider.secret_label}?"):
            self.reporter.skipped(PUBLISHING_SECRET, f"Skipping {NPM_TOKEN_NAME} setup")
            return

        if not (token := self.prompter.secret("Enter your NPM access token")):
            self.reporter.skipped(PUBLISHING_SECRET, "No token provided")
            return

        try:
            result = await provider.provision_secret(owner, repo, NPM_TOKEN_NAME, token)
        except SetupError as e:
            self.reporter.warning(PUBLISHING_SECRET, str(e), remediation=f"Set it manually: {provider.get_secrets_url(owner, repo)}")
            return

        self.reporter.success(PUBLISHING_SECRET, f"{NPM_TOKEN_NAME} {result}")

    async def _commit_and_push(self, provider: PlatformProvider, repository: LocalRepository) -> None:
        """Commit and push the CI file whenever git reports it as untracked or modified."""

        self._start(COMMIT_AND_PUSH)

        relative_path = provider.get_ci_config_file()

        if self.options.dry_run:
            self.reporter.info(COMMIT_AND_PUSH, f"Would commit and push {relative_path} if changed")
            return

        try:
            if not repository.path_has_changes(relative_path):
                self.reporter.skipped(COMMIT_AND_PUSH, "No changes to commit")
                return

            repository.commit_paths([relative_path], message=f"chore: add {relative_path} via repo-setup")
            used_alias = await asyncio.to_thread(repository.push, ["HEAD"], self.settings.ssh_aliases.get(provider.platform))
        except GitOperationFailedError as e:
            self.reporter.warning(COMMIT_AND_PUSH, str(e), remediation=e.suggestion)
            return

        self.reporter.success(COMMIT_AND_PUSH, "Committed and pushed" + (" (via SSH alias)" if used_alias else ""))

    async def _release_tag(self, provider: PlatformProvider, repository: LocalRepository, manifest: PackageManifest | None) -> None:
        self._start(RELEASE_TAG)

        if manifest is None:
            self.reporter.skipped(RELEASE_TAG, f"No {PACKAGE_JSON} found")
            return

        if self.options.dry_run:
            self.reporter.info(RELEASE_TAG, f"Would offer to tag {manifest.tag_name}")
            return

        if self.options.force:
            self.reporter.skipped(RELEASE_TAG, "Interactive step skipped (--force)")
            return

        tag = manifest.tag_name
        ssh_alias = self.settings.ssh_aliases.get(provider.platform)

        try:
            if repository.tag_exists(tag):
                next_version = next_patch_version(manifest.version)
                next_tag = f"v{next_version}"

                if not self.prompter.confirm(f"Tag {tag} exists. Bump to {next_tag} and create tag?"):
                    self.reporter.skipped(RELEASE_TAG, f"Tag {tag} already exists")
                    self.reporter.note("Bump manually: npm version patch && git push --tags")
                    return

                manifest_path = write_package_version(self.options.cwd, next_version)
                repository.commit_paths([repository.relative_path(manifest_path)], message=f"chore: bump version to {next_version}")
                repository.create_tag(next_tag)
                used_alias = await asyncio.to_thread(repository.push, ["HEAD", next_tag], ssh_alias)
                tag = next_tag
            else:
                if not self.prompter.confirm(f"Create and push version tag {tag} to trigger the release pipeline?"):
                    self.reporter.skipped(RELEASE_TAG, "Skipping version tag")
                    self.reporter.note(f"Run later: git tag {tag} && git push origin {tag}")
                    return

                repository.create_tag(tag)
                used_alias = await asyncio.to_thread(repository.push, [tag], ssh_alias)
        except GitOperationFailedError as e:
            self.reporter.warning(RELEASE_TAG, str(e), remediation=e.suggestion)
            return
        except (OSError, ValueError) as e:
            self.reporter.warning(RELEASE_TAG, str(e), remediation="npm version patch && git push && git push --tags")
            return

        self.reporter.success(RELEASE_TAG, f"Pushed tag {tag}" + (" (via SSH alias)" if used_alias else ""))
