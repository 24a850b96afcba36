"""Release manifest: the immutable aggregate output of a successful run."""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from ..artifacts.collector import Artifact, CollectedArtifacts

RELEASE_MANIFEST_FILE = "release-manifest.json"


@dataclass(frozen=True)
class ReleaseManifest:
    """Version tag, commit, per-component artifacts, notes and checksums.

    A published release is never edited; a new release is a new manifest.
    """

    version: str
    tag: str
    commit: str = ""
    components: Tuple[Tuple[str, str], ...] = ()
    artifacts: Tuple[Artifact, ...] = ()
    archives: Tuple[Path, ...] = ()
    checksums: Tuple[Tuple[str, str], ...] = ()
    notes: str = ""
    commits: Tuple[Tuple[str, str], ...] = field(default=())

    @classmethod
    def build(
        cls,
        version: str,
        components: Mapping[str, str],
        collected: Iterable[CollectedArtifacts],
        commit: str = "",
        commits: Optional[Mapping[str, str]] = None,
    ) -> "ReleaseManifest":
        """Assemble a manifest from collected artifacts.

        Args:
            version: Release version
            components: {component name: version} in build order
            collected: CollectedArtifacts for every platform/variant
            commit: Commit of the orchestrating repository
            commits: Optional {component: commit hash}
        """
        artifacts = []
        archives = []
        checksums: Dict[str, str] = {}
        for batch in collected:
            artifacts.extend(batch.artifacts)
            archives.extend(batch.archives)
            if batch.archive_checksum_file is not None:
                archives.append(batch.archive_checksum_file)
            checksums[batch.checksum_file.parent.name] = batch.checksum_file.read_text(encoding="utf-8")
        return cls(
            version=version,
            tag=f"v{version}",
            commit=commit,
            components=tuple(components.items()),
            artifacts=tuple(artifacts),
            archives=tuple(archives),
            checksums=tuple(sorted(checksums.items())),
            commits=tuple(sorted((commits or {}).items())),
        )

    def with_notes(self, notes: str) -> "ReleaseManifest":
        """Return a copy carrying release notes."""
        return replace(self, notes=notes)

    def artifacts_for(self, component: str) -> Tuple[Artifact, ...]:
        return tuple(a for a in self.artifacts if a.component == component)

    def to_dict(self) -> Dict[str, Any]:
        commits = dict(self.commits)
        return {
            "version": self.version,
            "tag": self.tag,
            "commit": self.commit,
            "components": [
                {
                    "name": name,
                    "version": version,
                    "commit": commits.get(name, ""),
                    "artifacts": [
                        {
                            "name": a.name,
                            "platform": a.platform,
                            "variant": a.variant,
                            "sha256": a.sha256,
                        }
                        for a in self.artifacts_for(name)
                    ],
                }
                for name, version in self.components
            ],
            "archives": [path.name for path in self.archives],
            "checksums": dict(self.checksums),
        }

    def write(self, path: Path) -> Path:
        """Write the manifest as JSON (a directory gets release-manifest.json)."""
        path = Path(path)
        if path.is_dir():
            path = path / RELEASE_MANIFEST_FILE
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2) + "\n", encoding="utf-8")
        return path
