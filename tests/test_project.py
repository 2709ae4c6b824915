import json
from pathlib import Path

import pytest
from inline_snapshot import snapshot

from repo_setup.project import (
    NPM,
    PNPM,
    YARN,
    PackageManifest,
    PackageScripts,
    detect_package_manager,
    load_package_manifest,
    next_patch_version,
    write_package_version,
)
from tests.conftest import package_json


class TestPackageManifest:
    def test_load(self, tmp_path: Path):
        _ = (tmp_path / "package.json").write_text(package_json(main="index.js"), encoding="utf-8")

        manifest = load_package_manifest(tmp_path)

        assert manifest is not None
        assert manifest.model_dump() == snapshot({"name": "@acme/widgets", "version": "1.0.0", "private": False, "scripts": {}})
        assert manifest.is_public
        assert manifest.is_scoped
        assert manifest.scope == "@acme"
        assert manifest.tag_name == "v1.0.0"

    def test_missing(self, tmp_path: Path):
        assert load_package_manifest(tmp_path) is None

    def test_invalid_json(self, tmp_path: Path):
        _ = (tmp_path / "package.json").write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError):  # noqa: PT011
            _ = load_package_manifest(tmp_path)

    def test_unscoped(self):
        manifest = PackageManifest(name="widgets", private=True)

        assert not manifest.is_scoped
        assert manifest.scope is None
        assert not manifest.is_public


class TestPackageScripts:
    def test_detects_scripts(self):
        scripts = PackageScripts.from_manifest(PackageManifest(scripts={"lint": "eslint .", "typecheck": "tsc", "test": "vitest"}))

        assert scripts.model_dump() == snapshot(
            {"lint": True, "test": True, "build": False, "typecheck": True, "typecheck_command": "npm run typecheck"}
        )

    def test_placeholder_test_script(self):
        manifest = PackageManifest(scripts={"test": 'echo "Error: no test specified" && exit 1'})

        assert PackageScripts.from_manifest(manifest).test is False


class TestPackageManager:
    def test_npm_by_default(self, tmp_path: Path):
        assert detect_package_manager(tmp_path) == NPM

    def test_yarn(self, tmp_path: Path):
        (tmp_path / "yarn.lock").touch()

        assert detect_package_manager(tmp_path) == YARN

    def test_pnpm_wins(self, tmp_path: Path):
        (tmp_path / "yarn.lock").touch()
        (tmp_path / "pnpm-lock.yaml").touch()

        assert detect_package_manager(tmp_path) == PNPM


@pytest.mark.parametrize(
    ("version", "expected"),
    [("1.2.3", "1.2.4"), ("0.0.9", "0.0.10"), ("2.0.0-beta.1", "2.0.1"), ("1.4.0+build.7", "1.4.1"), ("1.2", "1.2.1")],
)
def test_next_patch_version(version: str, expected: str):
    assert next_patch_version(version) == expected


def test_next_patch_version_invalid():
    with pytest.raises(ValueError):  # noqa: PT011
        _ = next_patch_version("latest")


def test_write_package_version(tmp_path: Path):
    _ = (tmp_path / "package.json").write_text(
        json.dumps({"name": "widgets", "version": "1.0.0", "scripts": {"test": "vitest"}, "license": "MIT"}), encoding="utf-8"
    )

    path = write_package_version(tmp_path, "1.0.1")

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == "1.0.1"
    assert list(data) == ["name", "version", "scripts", "license"]
    assert path.read_text(encoding="utf-8").endswith("}\n")


def test_write_package_version_keeps_non_ascii(tmp_path: Path):
    _ = (tmp_path / "package.json").write_text(
        json.dumps({"name": "widgets", "version": "1.0.0", "author": "Zoë Brontë"}, indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )

    path = write_package_version(tmp_path, "1.0.1")

    assert path.read_text(encoding="utf-8") == snapshot("""\
{
  "name": "widgets",
  "version": "1.0.1",
  "author": "Zoë Brontë"
}
""")
