import json
from pathlib import Path
from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field

PACKAGE_JSON = "package.json"

DEFAULT_VERSION = "1.0.0"


class PackageManifest(BaseModel):
    """The fields of `package.json` that drive setup decisions."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="The package name, possibly scoped (`@scope/name`).")
    version: str = Field(default=DEFAULT_VERSION, description="The package version.")
    private: bool = Field(default=False, description="Whether the package is marked private.")
    scripts: dict[str, str] = Field(default_factory=dict, description="The npm scripts defined by the package.")

    @property
    def is_public(self) -> bool:
        return not self.private

    @property
    def is_scoped(self) -> bool:
        return self.name.startswith("@")

    @property
    def scope(self) -> str | None:
        return self.name.split("/")[0] if self.is_scoped else None

    @property
    def tag_name(self) -> str:
        return f"v{self.version}"


class PackageScripts(BaseModel):
    """Which of the conventional npm scripts a package defines."""

    lint: bool = False
    test: bool = False
    build: bool = False
    typecheck: bool = False
    typecheck_command: str = "npm run type-check"

    @classmethod
    def from_manifest(cls, manifest: PackageManifest) -> Self:
        scripts = manifest.scripts
        test_script = scripts.get("test", "")
        return cls(
            lint="lint" in scripts,
            test=bool(test_script) and "no test specified" not in test_script,
            build="build" in scripts,
            typecheck="typecheck" in scripts or "type-check" in scripts,
            typecheck_command="npm run typecheck" if "typecheck" in scripts else "npm run type-check",
        )


class PackageManager(BaseModel):
    """The commands for the package manager a project uses."""

    model_config = ConfigDict(frozen=True)

    type: Literal["npm", "yarn", "pnpm"]
    install: str
    run: str
    test: str
    cache: str
    audit: str


NPM = PackageManager(type="npm", install="npm ci", run="npm run", test="npm test", cache="node", audit="npm audit --audit-level=high")
YARN = PackageManager(
    type="yarn", install="yarn install --frozen-lockfile", run="yarn", test="yarn test", cache="yarn", audit="yarn audit --level high"
)
PNPM = PackageManager(
    type="pnpm", install="pnpm install --frozen-lockfile", run="pnpm", test="pnpm test", cache="pnpm", audit="pnpm audit --audit-level=high"
)


def detect_package_manager(cwd: Path) -> PackageManager:
    """Pick the package manager from the lock file present in the project."""

    if (cwd / "pnpm-lock.yaml").exists():
        return PNPM

    if (cwd / "yarn.lock").exists():
        return YARN

    return NPM


def load_package_manifest(cwd: Path) -> PackageManifest | None:
    """Load `package.json` from the project root, or None when there is none."""

    manifest_path = cwd / PACKAGE_JSON

    if not manifest_path.is_file():
        return None

    return PackageManifest.model_validate_json(manifest_path.read_text(encoding="utf-8"))


def next_patch_version(version: str) -> str:
    """`1.2.3` -> `1.2.4`. Pre-release and build suffixes are dropped."""

    core = version.split("-")[0].split("+")[0]
    parts = [int(part) for part in core.split(".")]

    while len(parts) < 3:  # noqa: PLR2004
        parts.append(0)

    major, minor, patch = parts[:3]

    return f"{major}.{minor}.{patch + 1}"


def write_package_version(cwd: Path, version: str) -> Path:
    """Rewrite the `version` field of `package.json`, preserving every other field and its order."""

    manifest_path = cwd / PACKAGE_JSON
    data: dict[str, Any] = json.loads(manifest_path.read_text(encoding="utf-8"))  # pyright: ignore[reportAny]
    data["version"] = version
    _ = manifest_path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return manifest_path
