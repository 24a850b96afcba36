"""Build requirement analysis.

Decides, per component and platform, whether the release for the target
version already exists (download it) or must be built.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Protocol

from ..config.versions import VersionsManifest

logger = logging.getLogger(__name__)


class BuildAction(Enum):
    DOWNLOAD = "download"
    BUILD = "build"


class ReleaseIndex(Protocol):
    """Anything that can tell whether a component release already exists."""

    def release_exists(self, component, tag: str, platform: str) -> bool:
        ...

    def list_assets(self, component, tag: str) -> List[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class BuildDecision:
    """Whether one component on one platform is downloaded or built."""

    component: str
    platform: str
    action: BuildAction
    version: str
    git_tag: str

    @property
    def needs_build(self) -> bool:
        return self.action == BuildAction.BUILD


@dataclass
class BuildPlan:
    """Decisions for every (component, platform) pair, in build order."""

    version: str
    tag: str
    decisions: List[BuildDecision] = field(default_factory=list)

    def decision(self, component: str, platform: str) -> BuildDecision:
        for decision in self.decisions:
            if decision.component == component and decision.platform == platform:
                return decision
        raise KeyError(f"No decision for {component} on {platform}")

    def to_build(self, platform: Optional[str] = None) -> List[str]:
        """Components that must be built, in order."""
        return [
            d.component for d in self.decisions
            if d.needs_build and (platform is None or d.platform == platform)
        ]

    def to_download(self, platform: Optional[str] = None) -> List[str]:
        return [
            d.component for d in self.decisions
            if not d.needs_build and (platform is None or d.platform == platform)
        ]

    def to_dict(self) -> Dict[str, Any]:
        """JSON report: {component: {platform: {build, download, version}}}."""
        report: Dict[str, Any] = {}
        for d in self.decisions:
            report.setdefault(d.component, {})[d.platform] = {
                "build": d.needs_build,
                "download": not d.needs_build,
                "version": d.git_tag,
            }
        return report


class BuildRequirementAnalyzer:
    """Queries the release index once per (component, platform)."""

    def __init__(self, manifest: VersionsManifest, index: ReleaseIndex, show_progress: bool = False):
        self.manifest = manifest
        self.index = index
        self.show_progress = show_progress

    def analyze(self, order: Iterable[str], platforms: Iterable[str], version: str) -> BuildPlan:
        """
        Produce a build plan for the target version.

        Args:
            order: Component names in topological order
            platforms: Platform names to plan for
            version: Target release version (e.g., "0.2.0")

        Returns:
            BuildPlan with one decision per (component, platform)

        Raises:
            RegistryUnavailable: If the release index cannot answer
        """
        tag = f"v{version}"
        plan = BuildPlan(version=version, tag=tag)
        platforms = list(platforms)

        for name in order:
            component = self.manifest.get(name)
            for platform in platforms:
                # Existence is platform specific for binaries, so never reuse an
                # answer across platforms
                exists = self.index.release_exists(component, tag, platform)
                action = BuildAction.DOWNLOAD if exists else BuildAction.BUILD
                plan.decisions.append(BuildDecision(name, platform, action, version, tag))
                logger.info(f"{name} {tag} on {platform}: {action.value}")
                if self.show_progress:
                    print(f"  {name:<24} {platform:<16} {action.value}")

        return plan
