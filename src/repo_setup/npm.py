import shutil
import subprocess
from pathlib import Path

from pydantic import BaseModel, Field

from repo_setup.errors import SetupError
from repo_setup.utilities.logging import get_logger

logger = get_logger(__name__)

TRUSTED_PUBLISHING_MIN_VERSION = (11, 5)
TRUSTED_PUBLISHING_MIN_VERSION_TEXT = "11.5.0"

NPM_PACKAGE_URL = "https://www.npmjs.com/package"


class NpmVersionSupport(BaseModel):
    supported: bool = Field(description="Whether the installed npm supports trusted publishing.")
    version: str = Field(description="The installed npm version.")
    min_required: str = Field(default=TRUSTED_PUBLISHING_MIN_VERSION_TEXT, description="The minimum supported npm version.")


def parse_version(version: str) -> tuple[int, int]:
    """`11.5.1` -> `(11, 5)`. Unparseable parts count as zero."""

    parts = version.strip().lstrip("v").split(".")
    numbers = [int(part) if part.isdigit() else 0 for part in (parts + ["0", "0"])[:2]]
    return numbers[0], numbers[1]


def package_access_url(package_name: str) -> str:
    # Scoped names stay unencoded: /package/@scope/name
    return f"{NPM_PACKAGE_URL}/{package_name}/access"


class NpmCli:
    """Read-only queries against the npm CLI and registry."""

    cwd: Path
    executable: str

    def __init__(self, cwd: Path, executable: str = "npm"):
        self.cwd = cwd
        self.executable = executable

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run([self.executable, *args], cwd=self.cwd, capture_output=True, text=True, check=True)  # noqa: S603

    def get_version(self) -> str:
        """Get the installed npm version.

        Raises:
            SetupError: If npm is not installed or fails to run.
        """

        if shutil.which(self.executable) is None:
            msg = "npm is not installed or not accessible"
            raise SetupError(msg)

        try:
            return self._run("--version").stdout.strip()
        except (OSError, subprocess.CalledProcessError) as e:
            msg = "npm is not installed or not accessible"
            raise SetupError(msg, extra_info={"error": str(e)}) from e

    def check_trusted_publishing_support(self) -> NpmVersionSupport:
        version = self.get_version()
        return NpmVersionSupport(supported=parse_version(version) >= TRUSTED_PUBLISHING_MIN_VERSION, version=version)

    def package_exists(self, package_name: str) -> bool:
        """Whether `npm view <package> version` finds the package on the registry."""

        try:
            _ = self._run("view", package_name, "version")
        except subprocess.CalledProcessError as e:
            logger.debug(f"npm view {package_name} failed: {e.stderr}")
            return False
        except OSError as e:
            logger.debug(f"npm view {package_name} could not run: {e}")
            return False

        return True
