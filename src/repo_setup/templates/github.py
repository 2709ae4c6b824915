from pathlib import Path
from textwrap import dedent

from repo_setup.project import PackageManager, PackageScripts, detect_package_manager, load_package_manifest

NODE_VERSION = "20"

DEFAULT_WORKFLOW = dedent(
    """\
    name: CI

    on:
      push:
        branches: [main]
      pull_request:

    permissions:
      contents: read

    jobs:
      build:
        runs-on: ubuntu-latest
        steps:
          - uses: actions/checkout@v4
          - name: Build & Test
            run: echo "Add your build and test commands here"
    """
)


def _setup_steps(pm: PackageManager, registry: bool = False) -> list[str]:
    steps = ["      - uses: actions/checkout@v4"]

    if pm.type == "pnpm":
        steps.append("      - uses: pnpm/action-setup@v4")

    steps.append("      - uses: actions/setup-node@v4")
    steps.append("        with:")
    steps.append(f"          node-version: '{NODE_VERSION}'")
    steps.append(f"          cache: {'npm' if pm.type == 'npm' else pm.type}")
    if registry:
        steps.append("          registry-url: 'https://registry.npmjs.org'")

    steps.append(f"      - run: {pm.install}")
    return steps


def _ci_job(pm: PackageManager, scripts: PackageScripts) -> str:
    lines = ["  build:", "    runs-on: ubuntu-latest", "    steps:", *_setup_steps(pm)]

    if scripts.lint:
        lines.append(f"      - run: {pm.run} lint")
    if scripts.typecheck:
        lines.append(f"      - run: {scripts.typecheck_command}")
    if scripts.build:
        lines.append(f"      - run: {pm.run} build")
    if scripts.test:
        lines.append(f"      - run: {pm.test}")
    lines.append(f"      - run: {pm.audit} || true")

    return "\n".join(lines)


def _release_job(pm: PackageManager, scripts: PackageScripts) -> str:
    lines = [
        "  release:",
        "    needs: build",
        "    if: startsWith(github.ref, 'refs/tags/v')",
        "    runs-on: ubuntu-latest",
        "    permissions:",
        "      contents: read",
        "      id-token: write",
        "    steps:",
        *_setup_steps(pm, registry=True),
    ]

    if scripts.build:
        lines.append(f"      - run: {pm.run} build")
    lines.append("      - run: npm publish --provenance --access public")

    return "\n".join(lines)


def generate_github_workflow(cwd: Path) -> str:
    """Render `.github/workflows/ci.yml` for the project in `cwd`."""

    if (manifest := load_package_manifest(cwd)) is None:
        return DEFAULT_WORKFLOW

    pm = detect_package_manager(cwd)
    scripts = PackageScripts.from_manifest(manifest)

    jobs = [_ci_job(pm, scripts)]
    if manifest.is_public:
        jobs.append(_release_job(pm, scripts))

    return (
        "name: CI\n"
        "\n"
        "on:\n"
        "  push:\n"
        "    branches: [main, develop]\n"
        "    tags: ['v*']\n"
        "  pull_request:\n"
        "\n"
        "permissions:\n"
        "  contents: read\n"
        "\n"
        "jobs:\n" + "\n\n".join(jobs) + "\n"
    )
