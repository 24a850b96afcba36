"""Component builder.

This module compiles components with cargo for a variant and platform and
locates the produced binaries.

Design:
    - Component directories are passed explicitly; nothing changes directory
    - `local` dependency mode builds against path dependencies (development)
    - `registry` dependency mode refreshes the lock file with
      `cargo update --workspace` and then builds with `--locked`
    - Optional components downgrade build failures to warnings
"""

import logging
import re
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from ..config.pipeline_config import PlatformSpec, ReleaseConfig
from ..config.versions import Component
from ..errors import BuildFailure, MissingArtifact, TestFailure, ToolNotFound
from .executor import CommandExecutor

logger = logging.getLogger(__name__)

LOCAL_MODE = "local"
REGISTRY_MODE = "registry"
DEPENDENCY_MODES = (LOCAL_MODE, REGISTRY_MODE)

MIN_RUST_VERSION = (1, 70)
RUSTC_VERSION_RE = re.compile(r"rustc (\d+)\.(\d+)\.(\d+)")


@dataclass
class BuildResult:
    """Binaries produced by one component build."""

    component: str
    platform: str
    variant: str
    binaries: Dict[str, Path] = field(default_factory=dict)
    log_path: Optional[Path] = None
    duration: float = 0.0


@dataclass
class BuildReport:
    """Outcome of building a sequence of components."""

    results: List[BuildResult] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)

    def binaries(self) -> Dict[str, Path]:
        """All produced binaries keyed by name."""
        merged: Dict[str, Path] = {}
        for result in self.results:
            merged.update(result.binaries)
        return merged

    def by_component(self) -> Dict[str, Dict[str, Path]]:
        """Produced binaries grouped by component."""
        return {result.component: dict(result.binaries) for result in self.results if result.binaries}

    def merge(self, other: "BuildReport") -> None:
        self.results.extend(other.results)
        self.skipped.update(other.skipped)


def check_toolchain(executor: CommandExecutor, cwd: Optional[Path] = None) -> str:
    """Verify cargo and rustc are installed and rustc is recent enough.

    Returns:
        The rustc version string (e.g., "1.75.0")

    Raises:
        ToolNotFound: If a tool is missing or rustc is older than 1.70
    """
    for tool in ("cargo", "rustc"):
        if shutil.which(tool) is None:
            raise ToolNotFound(tool, "Install Rust from https://rustup.rs/")

    result = executor.run(["rustc", "--version"], cwd=cwd or Path.cwd(), timeout=60)
    match = RUSTC_VERSION_RE.search(result.output)
    if not result.success or not match:
        raise ToolNotFound("rustc", f"Could not determine rustc version: {result.output.strip()}")

    major, minor, patch = (int(part) for part in match.groups())
    if (major, minor) < MIN_RUST_VERSION:
        raise ToolNotFound(
            f"rustc >= {MIN_RUST_VERSION[0]}.{MIN_RUST_VERSION[1]}",
            f"Found rustc {major}.{minor}.{patch}. Run: rustup update",
        )
    return f"{major}.{minor}.{patch}"


class ComponentBuilder:
    """Builds and tests components with cargo."""

    def __init__(
        self,
        config: ReleaseConfig,
        executor: Optional[CommandExecutor] = None,
        show_progress: bool = True,
    ):
        """Initialize component builder.

        Args:
            config: Pipeline settings (workspace, features, timeouts)
            executor: Command executor (created if not provided)
            show_progress: Whether to print build progress
        """
        self.config = config
        self.executor = executor or CommandExecutor()
        self.show_progress = show_progress
        self._lock_guard = threading.Lock()
        self._lock_refreshes: Dict[str, threading.Lock] = {}
        self._refreshed: Set[str] = set()

    def component_dir(self, component: Component) -> Path:
        return self.config.workspace / component.repo_name

    def log_path(self, component: str, platform: str, variant: str, step: str) -> Path:
        return self.config.log_dir / f"{component}-{platform}-{variant}-{step}.log"

    def target_dir(self, component: Component, platform: PlatformSpec, variant: str) -> Path:
        """Cargo target directory, isolated per platform and variant."""
        return self.component_dir(component) / "target" / f"{platform.name}-{variant}"

    def output_dir(self, component: Component, platform: PlatformSpec, variant: str) -> Path:
        """Directory cargo writes release binaries to."""
        target_dir = self.target_dir(component, platform, variant)
        if platform.target:
            return target_dir / platform.target / "release"
        return target_dir / "release"

    def build_command(
        self, component: Component, variant: str, platform: PlatformSpec, dependency_mode: str
    ) -> List[str]:
        cmd = ["cargo", "build", "--release"]
        if dependency_mode == REGISTRY_MODE:
            cmd.append("--locked")
        if platform.target:
            cmd.extend(["--target", platform.target])
        cmd.extend(["--target-dir", str(self.target_dir(component, platform, variant))])
        features = self.config.features.features_for(component.name, variant)
        if features:
            cmd.extend(["--features", ",".join(features)])
        if self.config.build_jobs:
            cmd.extend(["--jobs", str(self.config.build_jobs)])
        return cmd

    def refresh_lock_file(self, component: Component, platform: PlatformSpec, variant: str) -> float:
        """Run `cargo update --workspace` once per component.

        Concurrent platform builds share the checkout, so the refresh is
        serialised and only the first caller runs it.

        Returns:
            Seconds spent (0 when already refreshed)

        Raises:
            BuildFailure: If cargo update fails or times out
        """
        with self._lock_guard:
            lock = self._lock_refreshes.setdefault(component.name, threading.Lock())
        with lock:
            if component.name in self._refreshed:
                return 0.0
            update = self.executor.run(
                ["cargo", "update", "--workspace"],
                cwd=self.component_dir(component),
                log_path=self.log_path(component.name, platform.name, variant, "update"),
                timeout=self.config.build_timeout,
            )
            if not update.success:
                reason = "cargo update timed out" if update.timed_out else "cargo update failed"
                raise BuildFailure(component.name, update.output, platform.name, reason)
            self._refreshed.add(component.name)
            return update.duration

    def build(
        self,
        component: Component,
        variant: str,
        platform: PlatformSpec,
        dependency_mode: str = LOCAL_MODE,
    ) -> BuildResult:
        """Build a component.

        Args:
            component: Component to build
            variant: Feature variant ("base" or "experimental")
            platform: Target platform
            dependency_mode: "local" (path dependencies) or "registry"

        Returns:
            BuildResult with the located binaries

        Raises:
            BuildFailure: If cargo fails or times out
            MissingArtifact: If a declared binary was not produced
        """
        if dependency_mode not in DEPENDENCY_MODES:
            raise ValueError(f"dependency_mode must be one of {DEPENDENCY_MODES}, got '{dependency_mode}'")

        repo_dir = self.component_dir(component)
        if not repo_dir.is_dir():
            raise BuildFailure(
                component.name, "", platform.name, f"component directory not found: {repo_dir}"
            )

        features = self.config.features.features_for(component.name, variant)
        if self.show_progress:
            print(
                f"Building {component.name} ({variant}, {platform.name}, "
                f"features: {','.join(features) or 'default'})..."
            )
        logger.info(f"Building {component.name} for {platform.name} ({variant}, {dependency_mode})")

        log_path = self.log_path(component.name, platform.name, variant, "build")
        duration = 0.0

        if dependency_mode == REGISTRY_MODE:
            duration += self.refresh_lock_file(component, platform, variant)

        result = self.executor.run(
            self.build_command(component, variant, platform, dependency_mode),
            cwd=repo_dir,
            log_path=log_path,
            timeout=self.config.build_timeout,
        )
        duration += result.duration

        if result.timed_out:
            reason = f"timed out after {self.config.build_timeout}s"
            raise BuildFailure(component.name, result.output, platform.name, reason)
        if result.returncode != 0:
            reason = f"exit code {result.returncode}"
            raise BuildFailure(component.name, result.output, platform.name, reason)

        binaries = self.locate_binaries(component, platform, variant)

        if self.show_progress:
            print(f"Built {component.name} in {duration:.1f}s")

        return BuildResult(
            component=component.name,
            platform=platform.name,
            variant=variant,
            binaries=binaries,
            log_path=log_path,
            duration=duration,
        )

    def locate_binaries(
        self, component: Component, platform: PlatformSpec, variant: str
    ) -> Dict[str, Path]:
        output_dir = self.output_dir(component, platform, variant)
        binaries: Dict[str, Path] = {}
        for name in component.binaries:
            path = output_dir / f"{name}{platform.binary_ext}"
            if not path.is_file():
                raise MissingArtifact(component.name, platform.name, str(path))
            binaries[name] = path
        return binaries

    def build_all(
        self,
        components: List[Component],
        variant: str,
        platform: PlatformSpec,
        dependency_mode: str = LOCAL_MODE,
    ) -> BuildReport:
        """Build components in the given (topological) order.

        Optional components that fail are recorded in `BuildReport.skipped`;
        any other failure propagates immediately.
        """
        report = BuildReport()
        for component in components:
            if not self.config.builds_on(component.name, platform.name):
                logger.info(f"Skipping {component.name}: not built for {platform.name}")
                continue
            try:
                report.results.append(self.build(component, variant, platform, dependency_mode))
            except (BuildFailure, MissingArtifact) as e:
                if not self.is_optional(component):
                    raise
                logger.warning(f"Optional component {component.name} failed to build, continuing: {e}")
                report.skipped[component.name] = str(e).splitlines()[0]
        return report

    def is_optional(self, component: Component) -> bool:
        override = self.config.component_settings(component.name).optional
        return component.optional if override is None else override

    def test(self, component: Component, platform: PlatformSpec, variant: str = "base") -> Path:
        """Run a component's test suite.

        Returns:
            Path to the test log

        Raises:
            TestFailure: If tests fail or time out
        """
        cmd = ["cargo", "test", "--release"]
        if platform.target:
            cmd.extend(["--target", platform.target])
        cmd.extend(["--target-dir", str(self.target_dir(component, platform, variant))])
        features = self.config.features.features_for(component.name, variant)
        if features:
            cmd.extend(["--features", ",".join(features)])

        if self.show_progress:
            print(f"Testing {component.name} ({platform.name})...")

        log_path = self.log_path(component.name, platform.name, variant, "test")
        result = self.executor.run(
            cmd, cwd=self.component_dir(component), log_path=log_path, timeout=self.config.test_timeout
        )
        if result.timed_out:
            raise TestFailure(component.name, result.output, f"timed out after {self.config.test_timeout}s")
        if result.returncode != 0:
            raise TestFailure(component.name, result.output, f"exit code {result.returncode}")
        return log_path
