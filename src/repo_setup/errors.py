ExtraInfoType = dict[str, str | None]

CONFLICT_STATUS = 409


class SetupError(Exception):
    """An error raised while setting up a repository."""

    def __init__(self, message: str, extra_info: ExtraInfoType | None = None):
        msg = message
        if extra_info:
            msg += " (" + ", ".join([f"{key}: {value}" for key, value in extra_info.items() if value is not None]) + ")"
        super().__init__(msg)


class NotAGitRepositoryError(SetupError):
    """The working directory is not inside a git working tree."""

    def __init__(self, cwd: str):
        super().__init__(message="Not inside a git repository.", extra_info={"cwd": cwd})


class NoGitRemoteFoundError(SetupError):
    """No `origin` remote is configured."""

    def __init__(self, cwd: str):
        super().__init__(
            message='Could not detect git remote. Make sure you have a git remote named "origin".',
            extra_info={"cwd": cwd},
        )


class UnsupportedRemoteFormatError(SetupError):
    """The remote URL does not point at a supported host."""

    def __init__(self, url: str):
        super().__init__(message="Unsupported remote URL format.", extra_info={"url": url, "supported": "github.com, bitbucket.org"})


class UnsupportedPlatformOverrideError(SetupError):
    """The requested platform override is not one of the supported platforms."""

    def __init__(self, platform: str):
        super().__init__(message=f"Unsupported platform: {platform}.", extra_info={"supported": "github, bitbucket"})


class MissingCredentialsError(SetupError):
    """No credentials for the platform were found in the environment."""

    def __init__(self, platform: str, variables: str, scopes: str, create_url: str):
        super().__init__(
            message=f"{variables} environment variable is required for {platform}.",
            extra_info={"required scopes": scopes, "create at": create_url},
        )


class InsufficientPermissionsError(SetupError):
    """The authenticated user is not an administrator of the repository."""

    def __init__(self, owner: str, repo: str):
        super().__init__(message="Admin permissions required.", extra_info={"repository": f"{owner}/{repo}"})


class PlatformApiError(SetupError):
    """A non-2xx response from a platform REST API."""

    status: int | None

    def __init__(self, action: str, status: int | None = None, message: str | None = None, extra_info: ExtraInfoType | None = None):
        self.status = status
        if not extra_info:
            extra_info = {}
        super().__init__(
            message="A request error occured.",
            extra_info={"action": action, "status": str(status) if status is not None else None, "message": message, **extra_info},
        )


class AlreadyExistsError(PlatformApiError):
    """The resource being created already exists."""


class AuthenticationError(PlatformApiError):
    """The credentials are invalid or expired."""


class FileWriteConflict(SetupError):  # noqa: N818
    """An existing file differs from the generated one and the user kept it."""

    def __init__(self, path: str):
        super().__init__(message="Existing file kept.", extra_info={"path": path})


class GitOperationFailedError(SetupError):
    """A git commit, tag or push failed."""

    suggestion: str | None

    def __init__(self, operation: str, message: str | None = None, suggestion: str | None = None):
        self.suggestion = suggestion
        super().__init__(message=f"git {operation} failed.", extra_info={"message": message, "run manually": suggestion})
