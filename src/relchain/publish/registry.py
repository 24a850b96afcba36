"""Package registry access (crates.io)."""

import logging
from pathlib import Path
from typing import Optional, Protocol

import requests

from ..build.executor import CommandExecutor, CommandResult
from ..errors import PublishFailure, RegistryUnavailable

logger = logging.getLogger(__name__)

USER_AGENT = "relchain (release automation)"


class PackageRegistry(Protocol):
    """A registry libraries are published to."""

    def exists(self, name: str, version: str) -> bool:
        ...

    def publish(self, name: str, path: Path, dry_run: bool = False) -> None:
        ...


class CratesRegistry:
    """crates.io: API queries through requests, uploads through `cargo publish`."""

    def __init__(
        self,
        registry_url: str = "https://crates.io",
        token: Optional[str] = None,
        executor: Optional[CommandExecutor] = None,
        log_dir: Optional[Path] = None,
        publish_timeout: float = 600,
        session: Optional[requests.Session] = None,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.token = token
        self.executor = executor or CommandExecutor()
        self.log_dir = log_dir
        self.publish_timeout = publish_timeout
        self.session = session or requests.Session()

    def exists(self, name: str, version: str) -> bool:
        """Check whether `name` at exactly `version` is available in the registry.

        Raises:
            RegistryUnavailable: For network errors and unexpected status codes
        """
        url = f"{self.registry_url}/api/v1/crates/{name}/{version}"
        try:
            response = self.session.get(url, headers={"User-Agent": USER_AGENT}, timeout=30)
        except requests.RequestException as e:
            raise RegistryUnavailable("crates.io", f"GET {url} failed: {e}") from e

        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise RegistryUnavailable("crates.io", f"GET {url}: {response.text[:500]}", status=response.status_code)

    def publish(self, name: str, path: Path, dry_run: bool = False) -> CommandResult:
        """Run `cargo publish` in a component directory.

        Raises:
            PublishFailure: If cargo publish fails or times out
        """
        cmd = ["cargo", "publish"]
        if dry_run:
            cmd.append("--dry-run")

        env = {}
        if self.token:
            env["CARGO_REGISTRY_TOKEN"] = self.token
        elif not dry_run:
            logger.warning("CARGO_REGISTRY_TOKEN is not set, relying on cargo credentials")

        log_path = None
        if self.log_dir is not None:
            step = "publish-dry-run" if dry_run else "publish"
            log_path = self.log_dir / f"{name}-{step}.log"

        result = self.executor.run(cmd, cwd=path, log_path=log_path, timeout=self.publish_timeout, env=env)
        if result.timed_out:
            raise PublishFailure(name, result.output, f"timed out after {self.publish_timeout}s")
        if result.returncode != 0:
            raise PublishFailure(name, result.output, f"cargo publish exit code {result.returncode}")
        return result
