"""Targeted text patches that migrate CI files to npm OIDC trusted publishing.

Each rule checks its own precondition and returns the patched text, or None when there is nothing to do
(or no anchor to patch against). Patches insert or rewrite single lines so the author's formatting and
comments survive.
"""

import re
from collections.abc import Callable
from pathlib import Path
from typing import NamedTuple

from pydantic import BaseModel, Field

from repo_setup.platforms.remote import Platform
from repo_setup.utilities.logging import get_logger
from repo_setup.workflows.analysis import (
    BITBUCKET_LEGACY_TOKEN_PATTERN,
    ID_TOKEN_PATTERN,
    OIDC_STEP_FLAG_PATTERN,
    OIDC_STEP_TOKEN,
    PROVENANCE_ENV_PATTERN,
    SEMANTIC_RELEASE_PATTERN,
    dialect_for,
)

logger = get_logger(__name__)

ON_KEY_PATTERN = re.compile(r"""^(?:on|"on"|'on'):""")
TOP_LEVEL_PERMISSIONS_BLOCK_PATTERN = re.compile(r"^permissions:[ \t]*(?:#[^\n]*)?$", re.MULTILINE)
TOKEN_ENV_PATTERN = re.compile(r"(env:[ \t]*\n)([ \t]+)(\w+_TOKEN:[ \t]*\$\{\{[^}]+\}\})", re.IGNORECASE)
UNPROVENANCED_PUBLISH_PATTERN = re.compile(r"npm[ \t]+publish(?![\w-])(?![^\n]*--provenance)")
LEGACY_NODE_AUTH_TOKEN_PATTERN = re.compile(
    r"^([ \t]*)(NODE_AUTH_TOKEN:[ \t]*\$\{\{\s*secrets\.NPM_TOKEN\s*\}\})", re.IGNORECASE | re.MULTILINE
)
STEP_PATTERN = re.compile(r"^([ \t]*)-[ \t]*step:[ \t]*(?:&[\w-]+[ \t]*)?(?:#[^\n]*)?$")
STEP_NAME_PATTERN = re.compile(r"^([ \t]*)name:[^\n]*publish", re.IGNORECASE)

REMOVED_TOKEN_NOTE = "# Removed: Using OIDC trusted publishing instead"
OIDC_STEP_TOKEN_REFERENCE = "${BITBUCKET_STEP_OIDC_TOKEN}"


class WorkflowUpdate(BaseModel):
    updated: bool = Field(description="Whether any rule changed the file.")
    changes: list[str] = Field(default_factory=list, description="A description of each applied change.")


class WorkflowRule(NamedTuple):
    name: str
    description: str
    apply: Callable[[str], str | None]


def _indent_of(line: str) -> int:
    return len(line) - len(line.lstrip())


def _is_top_level_key(line: str) -> bool:
    return bool(line.strip()) and not line[0].isspace() and not line.startswith("#")


def add_id_token_permission(content: str) -> str | None:
    """Grant `id-token: write`, merging into a top-level `permissions:` block or adding one after `on:`."""

    if ID_TOKEN_PATTERN.search(content):
        return None

    lines = content.split("\n")

    if match := TOP_LEVEL_PERMISSIONS_BLOCK_PATTERN.search(content):
        following = content[match.end() :].lstrip("\n").split("\n", 1)[0]
        indent = " " * (_indent_of(following) or 2)
        return content[: match.end()] + f"\n{indent}id-token: write" + content[match.end() :]

    # `permissions: read-all` and friends cannot take an extra entry.
    if any(line.startswith("permissions:") for line in lines):
        return None

    if (on_index := next((index for index, line in enumerate(lines) if ON_KEY_PATTERN.match(line)), None)) is None:
        return None

    insert_at = next((index for index in range(on_index + 1, len(lines)) if _is_top_level_key(lines[index])), len(lines))

    block = ["permissions:", "  id-token: write", "  contents: read"]

    # Keep the blank line that separated `on:` from the next key on both sides of the new block.
    if insert_at < len(lines):
        block.append("")
    if insert_at > 0 and lines[insert_at - 1].strip():
        block.insert(0, "")
    elif insert_at == len(lines) and lines[-1] == "":
        insert_at -= 1
        block.insert(0, "")

    return "\n".join(lines[:insert_at] + block + lines[insert_at:])


def add_release_provenance_env(content: str) -> str | None:
    """Set `NPM_CONFIG_PROVENANCE: true` in the env block that passes semantic-release its token."""

    if not SEMANTIC_RELEASE_PATTERN.search(content) or PROVENANCE_ENV_PATTERN.search(content):
        return None

    if not (match := TOKEN_ENV_PATTERN.search(content)):
        return None

    insert_at = match.end(1)
    return content[:insert_at] + f"{match.group(2)}NPM_CONFIG_PROVENANCE: true\n" + content[insert_at:]


def add_publish_provenance_flag(content: str) -> str | None:
    """Append `--provenance` to each `npm publish` that lacks it."""

    if not UNPROVENANCED_PUBLISH_PATTERN.search(content):
        return None

    return UNPROVENANCED_PUBLISH_PATTERN.sub("npm publish --provenance", content)


def comment_out_legacy_token(content: str) -> str | None:
    """Comment out (never delete) `NODE_AUTH_TOKEN: ${{ secrets.NPM_TOKEN }}`."""

    if not LEGACY_NODE_AUTH_TOKEN_PATTERN.search(content):
        return None

    return LEGACY_NODE_AUTH_TOKEN_PATTERN.sub(rf"\1# \2  {REMOVED_TOKEN_NOTE}", content)


def _step_blocks(lines: list[str]) -> list[tuple[int, int]]:
    """The `(start, end)` line ranges of each `- step:` item in a pipeline, anchored (`- step: &name`) or not."""

    blocks: list[tuple[int, int]] = []

    for start, line in enumerate(lines):
        if not (match := STEP_PATTERN.match(line)):
            continue

        step_indent = len(match.group(1))
        end = next(
            (index for index in range(start + 1, len(lines)) if lines[index].strip() and _indent_of(lines[index]) <= step_indent),
            len(lines),
        )
        blocks.append((start, end))

    return blocks


def add_oidc_step_flag(content: str) -> str | None:
    """Add `oidc: true` to the publish step, after its `name:` line.

    The publish step is the first step named like "publish", else the first step running `npm publish`.
    """

    lines = content.split("\n")
    blocks = _step_blocks(lines)

    def named_publish(block: tuple[int, int]) -> bool:
        return any(STEP_NAME_PATTERN.match(line) for line in lines[block[0] + 1 : block[1]])

    def runs_publish(block: tuple[int, int]) -> bool:
        return any(re.search(r"npm[ \t]+publish(?![\w-])", line) for line in lines[block[0] + 1 : block[1]])

    if not (step := next(filter(named_publish, blocks), None) or next(filter(runs_publish, blocks), None)):
        return None

    start, end = step
    body = lines[start + 1 : end]

    if any(OIDC_STEP_FLAG_PATTERN.search(line) for line in body):
        return None

    if not (properties := [index for index in range(start + 1, end) if lines[index].strip()]):
        return None

    indent = " " * _indent_of(lines[properties[0]])
    name_index = next((index for index in properties if lines[index].strip().startswith("name:")), start)

    lines.insert(name_index + 1, f"{indent}oidc: true")
    return "\n".join(lines)


def replace_legacy_token_variable(content: str) -> str | None:
    """Swap `$NPM_TOKEN` / `${NPM_TOKEN}` for the step's OIDC token."""

    if not BITBUCKET_LEGACY_TOKEN_PATTERN.search(content):
        return None

    return BITBUCKET_LEGACY_TOKEN_PATTERN.sub(lambda _: OIDC_STEP_TOKEN_REFERENCE, content)


GITHUB_RULES: list[WorkflowRule] = [
    WorkflowRule("add_id_token_permission", "Added id-token: write permission", add_id_token_permission),
    WorkflowRule(
        "add_release_provenance_env", "Added NPM_CONFIG_PROVENANCE: true for semantic-release provenance", add_release_provenance_env
    ),
    WorkflowRule("add_publish_provenance_flag", "Added --provenance flag to npm publish commands", add_publish_provenance_flag),
    WorkflowRule("comment_out_legacy_token", "Commented out NODE_AUTH_TOKEN (OIDC replaces token-based auth)", comment_out_legacy_token),
]

BITBUCKET_RULES: list[WorkflowRule] = [
    WorkflowRule("add_oidc_step_flag", "Added oidc: true to publish step", add_oidc_step_flag),
    WorkflowRule("replace_legacy_token_variable", f"Replaced NPM_TOKEN with {OIDC_STEP_TOKEN}", replace_legacy_token_variable),
    WorkflowRule("add_publish_provenance_flag", "Added --provenance flag to npm publish commands", add_publish_provenance_flag),
]

RULES: dict[Platform, list[WorkflowRule]] = {
    Platform.GITHUB: GITHUB_RULES,
    Platform.BITBUCKET: BITBUCKET_RULES,
}


def apply_rules(content: str, rules: list[WorkflowRule]) -> tuple[str, list[str]]:
    changes: list[str] = []

    for rule in rules:
        if (patched := rule.apply(content)) is None or patched == content:
            continue

        logger.debug(f"Applied workflow rule {rule.name}")
        content = patched
        changes.append(rule.description)

    return content, changes


def update_workflow(path: Path, dry_run: bool = False) -> WorkflowUpdate:
    """Patch a workflow file for OIDC trusted publishing.

    Only rules whose precondition is unmet are applied, so a second call reports no changes.
    With `dry_run`, the changes are computed but the file is left untouched.
    """

    original = path.read_text(encoding="utf-8")

    content, changes = apply_rules(original, RULES[dialect_for(path)])

    if changes and not dry_run:
        _ = path.write_text(content, encoding="utf-8")

    return WorkflowUpdate(updated=bool(changes), changes=changes)
