"""Error taxonomy for relchain.

Every fatal error names the offending component and/or platform and carries
the underlying tool's diagnostic output so the operator never sees a bare
"build failed".

Fatal:
    MalformedVersion, ManifestError, MissingDependency, CyclicDependency,
    RegistryUnavailable, CheckoutFailure, BuildFailure, TestFailure,
    MissingArtifact, ReleaseCreationError, ToolNotFound

Aborts tagging/release but not independent platform builds:
    PublishFailure

Recovered locally (logged, summarised):
    TagFailure
"""

from typing import Optional, Sequence

# Number of trailing log lines embedded in error messages
LOG_TAIL_LINES = 40


def tail(text: str, lines: int = LOG_TAIL_LINES) -> str:
    """Return the last `lines` lines of a tool's output."""
    if not text:
        return ""
    return "\n".join(text.rstrip().splitlines()[-lines:])


class ReleaseError(Exception):
    """Base class for all release pipeline errors."""

    fatal = True


class MalformedVersion(ReleaseError):
    """Raised when a version string is not MAJOR.MINOR.PATCH."""

    def __init__(self, version: str, component: Optional[str] = None):
        self.version = version
        self.component = component
        where = f" for '{component}'" if component else ""
        super().__init__(f"Malformed version '{version}'{where} (expected MAJOR.MINOR.PATCH)")


class ManifestError(ReleaseError):
    """Raised when versions.toml or relchain.ini cannot be read."""

    pass


class MissingDependency(ReleaseError):
    """Raised when a component requires a component that is not declared."""

    def __init__(self, component: str, dependency: str):
        self.component = component
        self.dependency = dependency
        super().__init__(f"Component '{component}' requires '{dependency}' which is not defined")


class CyclicDependency(ReleaseError):
    """Raised when the dependency declarations contain a cycle."""

    def __init__(self, components: Sequence[str]):
        self.components = list(components)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.components)}")


class RegistryUnavailable(ReleaseError):
    """Raised when a release index or package registry cannot be queried."""

    def __init__(self, registry: str, detail: str, status: Optional[int] = None):
        self.registry = registry
        self.detail = detail
        self.status = status
        status_text = f" (HTTP {status})" if status is not None else ""
        super().__init__(f"{registry} unavailable{status_text}: {detail}")


class BuildFailure(ReleaseError):
    """Raised when compiling a component fails or times out."""

    def __init__(self, component: str, log: str, platform: Optional[str] = None, reason: str = ""):
        self.component = component
        self.platform = platform
        self.log = log
        where = f" for {platform}" if platform else ""
        message = f"Build failed for {component}{where}"
        if reason:
            message += f": {reason}"
        if log:
            message += f"\n{tail(log)}"
        super().__init__(message)


class TestFailure(ReleaseError):
    """Raised when a component's test suite fails or times out."""

    __test__ = False  # not a pytest test class

    def __init__(self, component: str, log: str, reason: str = ""):
        self.component = component
        self.log = log
        message = f"Tests failed for {component}"
        if reason:
            message += f": {reason}"
        if log:
            message += f"\n{tail(log)}"
        super().__init__(message)


class PublishFailure(ReleaseError):
    """Raised when publishing a library to the package registry fails."""

    def __init__(self, component: str, log: str = "", reason: str = ""):
        self.component = component
        self.log = log
        message = f"Publish failed for {component}"
        if reason:
            message += f": {reason}"
        if log:
            message += f"\n{tail(log)}"
        super().__init__(message)


class TagFailure(ReleaseError):
    """Raised when tagging a single repository fails. Never aborts a run."""

    fatal = False

    def __init__(self, repo: str, detail: str):
        self.repo = repo
        self.detail = detail
        super().__init__(f"Failed to tag {repo}: {detail}")


class CheckoutFailure(ReleaseError):
    """Raised when a component repository cannot be cloned, updated or checked out."""

    def __init__(self, repo: str, detail: str):
        self.repo = repo
        self.detail = detail
        super().__init__(f"Failed to prepare {repo}: {detail}")


class MissingArtifact(ReleaseError):
    """Raised when an expected binary or archive does not exist."""

    def __init__(self, component: str, platform: str, path: Optional[str] = None):
        self.component = component
        self.platform = platform
        self.path = path
        where = f": {path}" if path else ""
        super().__init__(f"Missing artifact for {component} on {platform}{where}")


class ReleaseCreationError(ReleaseError):
    """Raised when the release object cannot be created in full."""

    pass


class ToolNotFound(ReleaseError):
    """Raised when a required external tool is not installed."""

    def __init__(self, tool: str, hint: str = ""):
        self.tool = tool
        message = f"Required tool not found: {tool}"
        if hint:
            message += f". {hint}"
        super().__init__(message)
