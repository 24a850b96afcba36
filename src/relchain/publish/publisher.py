"""Ordered library publishing.

Libraries are published strictly in dependency order. Before each publish,
every internal dependency in the library's Cargo.toml is pinned to the exact
version that was just published, and after each publish the registry is
polled until the new version is visible, so the next library in the chain
can resolve it.
"""

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from ..config.versions import Component, VersionsManifest
from ..errors import PublishFailure, RegistryUnavailable
from ..graph import DependencyGraph
from .manifest_rewriter import CargoManifestRewriter
from .registry import PackageRegistry

logger = logging.getLogger(__name__)

_locks_guard = threading.Lock()
_publish_locks: Dict[str, threading.Lock] = {}


def publish_lock(name: str) -> threading.Lock:
    """Process-wide lock serialising publishes of one component."""
    with _locks_guard:
        if name not in _publish_locks:
            _publish_locks[name] = threading.Lock()
        return _publish_locks[name]


@dataclass
class PublishReport:
    """Outcome of a publish run.

    `excluded` holds libraries that were never attempted because their build
    was skipped; `skipped` holds dry-run publishes that could not be checked
    because a dependency is not in the registry yet.
    """

    published: List[str] = field(default_factory=list)
    already_published: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    blocked: Dict[str, str] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        """False when anything failed or was blocked; tagging is then forbidden."""
        return not self.failed and not self.blocked


class Publisher:
    """Publishes library components in topological order."""

    def __init__(
        self,
        manifest: VersionsManifest,
        graph: DependencyGraph,
        registry: PackageRegistry,
        workspace: Path,
        rewriter: Optional[CargoManifestRewriter] = None,
        poll_interval: float = 10.0,
        poll_timeout: float = 300.0,
        dry_run: bool = False,
        show_progress: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize publisher.

        Args:
            manifest: Version manifest
            graph: Dependency graph built from the manifest
            registry: Package registry to publish to
            workspace: Directory holding the component checkouts
            rewriter: Cargo.toml rewriter (created if not provided)
            poll_interval: Seconds between registry availability checks
            poll_timeout: Maximum seconds to wait for a publish to be indexed
            dry_run: Use `cargo publish --dry-run`, skip polling and revert pins
            show_progress: Whether to print progress
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.manifest = manifest
        self.graph = graph
        self.registry = registry
        self.workspace = workspace
        self.rewriter = rewriter or CargoManifestRewriter()
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.dry_run = dry_run
        self.show_progress = show_progress
        self.sleep = sleep
        self.clock = clock

    def cargo_manifest(self, component: Component) -> Path:
        return self.workspace / component.repo_name / "Cargo.toml"

    def internal_dependencies(self, component: Component) -> List[Component]:
        """Declared dependencies that are published libraries."""
        deps = [self.manifest.get(name) for name in self.graph.dependencies_of(component.name)]
        return [dep for dep in deps if dep.publishable]

    def pin_dependencies(self, component: Component, version: str) -> List[str]:
        """Pin every internal dependency of a component to `version` and verify.

        Returns:
            Names of the dependencies that were pinned

        Raises:
            PublishFailure: If the manifest is missing or verification fails
        """
        cargo_toml = self.cargo_manifest(component)
        if not cargo_toml.is_file():
            raise PublishFailure(component.name, reason=f"Cargo.toml not found: {cargo_toml}")

        pinned = []
        for dep in self.internal_dependencies(component):
            self.rewriter.pin_dependency(cargo_toml, dep.name, version)
            self.rewriter.verify_pinned(cargo_toml, dep.name, version)
            pinned.append(dep.name)
        return pinned

    def wait_until_available(self, name: str, version: str) -> None:
        """Poll the registry until `name` at `version` is visible.

        Raises:
            RegistryUnavailable: If the version is not visible within poll_timeout
        """
        deadline = self.clock() + self.poll_timeout
        last_error = ""
        while True:
            try:
                if self.registry.exists(name, version):
                    logger.info(f"{name} {version} is available in the registry")
                    return
            except RegistryUnavailable as e:
                last_error = str(e)
                logger.debug(f"Registry check for {name} failed: {e}")

            if self.clock() >= deadline:
                detail = f"{name} {version} not visible after {self.poll_timeout:.0f}s"
                if last_error:
                    detail += f" (last error: {last_error})"
                raise RegistryUnavailable("package registry", detail)

            if self.show_progress:
                print(f"Waiting for {name} {version} to be indexed...")
            self.sleep(self.poll_interval)

    def unpublished_dependencies(self, component: Component, version: str) -> List[str]:
        """Internal dependencies of a component not yet visible at `version`."""
        deps = self.internal_dependencies(component)
        return [dep.name for dep in deps if not self.registry.exists(dep.name, version)]

    @contextmanager
    def _restored_on_exit(self, component: Component) -> Iterator[None]:
        """Put the component's Cargo.toml back as it was when the block exits."""
        cargo_toml = self.cargo_manifest(component)
        original = cargo_toml.read_bytes() if cargo_toml.is_file() else None
        try:
            yield
        finally:
            if original is not None and cargo_toml.read_bytes() != original:
                cargo_toml.write_bytes(original)
                logger.debug(f"Restored {cargo_toml}")

    def publish_one(self, component: Component, version: str, report: PublishReport) -> None:
        """Pin, publish and wait for one library.

        In dry-run mode the pins are verified and then reverted, and
        `cargo publish --dry-run` is only attempted when every internal
        dependency already exists in the registry at `version`.

        Raises:
            PublishFailure: If pinning or publishing fails
            RegistryUnavailable: If the registry cannot be queried or the
                publish never becomes visible
        """
        with publish_lock(component.name):
            if self.dry_run:
                with self._restored_on_exit(component):
                    self.pin_dependencies(component, version)
                    missing = self.unpublished_dependencies(component, version)
                    if missing:
                        reason = f"{', '.join(missing)} {version} not in the registry"
                        logger.info(f"Not dry-run publishing {component.name}: {reason}")
                        if self.show_progress:
                            print(f"[dry-run] Skipping cargo publish for {component.name}: {reason}")
                        report.skipped[component.name] = reason
                        return
                    if self.show_progress:
                        print(f"Dry-run publishing {component.name} {version}...")
                    self.registry.publish(component.name, self.workspace / component.repo_name, dry_run=True)
                report.published.append(component.name)
                return

            self.pin_dependencies(component, version)

            if self.registry.exists(component.name, version):
                logger.info(f"{component.name} {version} already published, skipping")
                if self.show_progress:
                    print(f"{component.name} {version} already published")
                report.already_published.append(component.name)
                return

            if self.show_progress:
                print(f"Publishing {component.name} {version}...")

            self.registry.publish(component.name, self.workspace / component.repo_name)
            self.wait_until_available(component.name, version)
            report.published.append(component.name)

    def publish_all(
        self, order: List[str], version: str, exclude: Optional[Dict[str, str]] = None
    ) -> PublishReport:
        """
        Publish every publishable library in `order`.

        A failure is recorded and the run continues with components that do
        not depend on a failed one; those that do are recorded as blocked.

        Args:
            order: Component names in topological order
            version: Version being released
            exclude: {name: reason} of components that must not be published
                (optional components whose build failed); their dependents
                are blocked

        Returns:
            PublishReport

        Raises:
            RegistryUnavailable: If the registry cannot be queried or a
                publish never becomes visible
        """
        report = PublishReport(dry_run=self.dry_run)
        excluded = dict(exclude or {})

        for name in order:
            component = self.manifest.get(name)
            if not component.publishable:
                continue

            if name in excluded:
                logger.warning(f"Not publishing {name}: {excluded[name]}")
                report.excluded[name] = excluded[name]
                continue

            unavailable = set(report.failed) | set(report.blocked) | set(report.excluded)
            broken = sorted(self.graph.transitive_dependencies(name) & unavailable)
            if broken:
                reason = f"depends on unpublished {', '.join(broken)}"
                logger.error(f"Not publishing {name}: {reason}")
                report.blocked[name] = reason
                continue

            try:
                self.publish_one(component, version, report)
            except PublishFailure as e:
                logger.error(f"Publishing {name} failed: {e}")
                report.failed[name] = str(e)

        return report
