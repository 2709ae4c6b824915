from pathlib import Path
from textwrap import dedent

from repo_setup.project import PackageManager, PackageScripts, detect_package_manager, load_package_manifest

NODE_IMAGE = "node:20"


def _script_lines(commands: list[str], indent: int) -> str:
    return "\n".join(f"{' ' * indent}- {command}" for command in commands)


def _default_step(pm: PackageManager, scripts: PackageScripts) -> str:
    commands = [pm.install]
    if scripts.lint:
        commands.append(f"{pm.run} lint")
    if scripts.typecheck:
        commands.append(scripts.typecheck_command)
    if scripts.build:
        commands.append(f"{pm.run} build")
    if scripts.test:
        commands.append(pm.test)

    return (
        "    - step:\n"
        "        name: Install & Validate\n"
        "        caches:\n"
        f"          - {pm.cache}\n"
        "        script:\n"
        f"{_script_lines(commands, 12)}"
    )


def _pr_step(name: str, pm: PackageManager, command: str, artifacts: list[str] | None = None) -> str:
    step = (
        "          - step:\n"
        f"              name: {name}\n"
        "              caches:\n"
        f"                - {pm.cache}\n"
        "              script:\n"
        f"                - {pm.install}\n"
        f"                - {command}"
    )
    if artifacts:
        step += "\n              artifacts:\n" + _script_lines(artifacts, 16)
    return step


def _pr_parallel_steps(pm: PackageManager, scripts: PackageScripts) -> str:
    steps: list[str] = []

    if scripts.lint:
        steps.append(_pr_step("Lint", pm, f"{pm.run} lint"))
    if scripts.typecheck:
        steps.append(_pr_step("Type Check", pm, scripts.typecheck_command))
    if scripts.test:
        steps.append(_pr_step("Test", pm, pm.test))
    if scripts.build:
        steps.append(_pr_step("Build", pm, f"{pm.run} build", artifacts=["dist/**"]))
    steps.append(_pr_step("Security Audit", pm, f"{pm.audit} || true"))

    return "      - parallel:\n" + "\n".join(steps)


def _branch_steps(pm: PackageManager, scripts: PackageScripts) -> str:
    commands = [pm.install]
    if scripts.build:
        commands.append(f"{pm.run} build")
    if scripts.test:
        commands.append(pm.test)

    script = _script_lines(commands, 12)

    return (
        "    main:\n"
        "      - step:\n"
        "          name: Build & Verify\n"
        "          caches:\n"
        f"            - {pm.cache}\n"
        "          script:\n"
        f"{script}\n"
        "          artifacts:\n"
        "            - dist/**\n"
        "      - step:\n"
        "          name: Deploy\n"
        "          deployment: production\n"
        "          trigger: manual\n"
        "          script:\n"
        '            - echo "Add your deployment commands here"\n'
        "\n"
        "    develop:\n"
        "      - step:\n"
        "          name: Build & Test\n"
        "          caches:\n"
        f"            - {pm.cache}\n"
        "          script:\n"
        f"{script}\n"
        "      - step:\n"
        "          name: Deploy to Staging\n"
        "          deployment: staging\n"
        "          trigger: manual\n"
        "          script:\n"
        '            - echo "Add your staging deployment commands here"'
    )


def _tag_steps(pm: PackageManager, scripts: PackageScripts, is_private: bool) -> str:
    commands = [pm.install]
    if scripts.build:
        commands.append(f"{pm.run} build")

    if not is_private:
        # Public packages publish through the step's OIDC token (npm trusted publishing).
        commands.append('npm config set //registry.npmjs.org/:_authToken "${BITBUCKET_STEP_OIDC_TOKEN}"')
        commands.append("npm publish --provenance --access public")

        return (
            "    'v*':\n"
            "      - step:\n"
            "          name: Publish to NPM\n"
            "          oidc: true\n"
            "          caches:\n"
            f"            - {pm.cache}\n"
            "          script:\n"
            f"{_script_lines(commands, 12)}"
        )

    if scripts.test:
        commands.append(pm.test)
    commands.append('echo "Release $(git describe --tags) built successfully"')

    return (
        "    'v*':\n"
        "      - step:\n"
        "          name: Build Release\n"
        "          caches:\n"
        f"            - {pm.cache}\n"
        "          script:\n"
        f"{_script_lines(commands, 12)}\n"
        "          artifacts:\n"
        "            - dist/**"
    )


PNPM_DEFINITIONS = """
definitions:
  caches:
    pnpm: $HOME/.local/share/pnpm/store
"""

DEFAULT_PIPELINE = dedent(
    """\
    image: atlassian/default-image:4

    pipelines:
      default:
        - step:
            name: Build & Test
            script:
              - echo "Add your build and test commands here"

      pull-requests:
        '**':
          - step:
              name: PR Validation
              script:
                - echo "Add your PR validation commands here"

      branches:
        main:
          - step:
              name: Build
              script:
                - echo "Add your production build commands here"
          - step:
              name: Deploy
              deployment: production
              trigger: manual
              script:
                - echo "Add your deployment commands here"

      tags:
        'v*':
          - step:
              name: Release
              script:
                - echo "Build release $(git describe --tags)"
    """
)


def generate_pipelines_yaml(cwd: Path) -> str:
    """Render `bitbucket-pipelines.yml` for the project in `cwd`."""

    if (manifest := load_package_manifest(cwd)) is None:
        return DEFAULT_PIPELINE

    pm = detect_package_manager(cwd)
    scripts = PackageScripts.from_manifest(manifest)

    definitions = PNPM_DEFINITIONS if pm.type == "pnpm" else ""

    return (
        f"image: {NODE_IMAGE}\n"
        "\n"
        "pipelines:\n"
        "  default:\n"
        f"{_default_step(pm, scripts)}\n"
        "\n"
        "  pull-requests:\n"
        "    '**':\n"
        f"{_pr_parallel_steps(pm, scripts)}\n"
        "\n"
        "  branches:\n"
        f"{_branch_steps(pm, scripts)}\n"
        "\n"
        "  tags:\n"
        f"{_tag_steps(pm, scripts, is_private=manifest.private)}\n"
        f"{definitions}"
    )
