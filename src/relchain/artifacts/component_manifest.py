"""Per-component build provenance manifests."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .checksums import compute_sha256

logger = logging.getLogger(__name__)


def _find_primary_binary(
    binaries: Sequence[str], artifacts_dir: Path, binary_ext: str
) -> Optional[Path]:
    for name in binaries:
        candidate = artifacts_dir / f"{name}{binary_ext}"
        if candidate.is_file():
            return candidate
    # Fall back to any staged file starting with a declared binary name
    for name in binaries:
        matches = sorted(artifacts_dir.glob(f"{name}*")) if artifacts_dir.is_dir() else []
        for match in matches:
            if match.is_file():
                return match
    return None


def generate_component_manifest(
    component: str,
    version_tag: str,
    commit: str,
    platform: str,
    artifacts_dir: Path,
    binaries: Sequence[str] = (),
    org: Optional[str] = None,
    output_file: Optional[Path] = None,
    binary_ext: str = "",
    build_method: str = "relchain",
) -> Path:
    """
    Write a provenance manifest for one component build.

    Args:
        component: Component name
        version_tag: Release tag (e.g., "v0.2.0")
        commit: Source commit hash
        platform: Platform name
        artifacts_dir: Directory holding the staged binaries
        binaries: Binary names the component produces; the first one found is
            recorded as the primary binary (libraries have none)
        org: Source organization for repository URLs
        output_file: Destination (default
            `<artifacts_dir>/component-manifest-<component>-<tag>.json`)
        binary_ext: Binary suffix for the platform (".exe" on Windows)
        build_method: Recorded build method

    Returns:
        Path to the written manifest
    """
    artifacts_dir = Path(artifacts_dir)
    if output_file is None:
        output_file = artifacts_dir / f"component-manifest-{component}-{version_tag}.json"

    binary: Dict[str, Any] = {"name": "", "hash": "", "size": 0}
    primary = _find_primary_binary(binaries, artifacts_dir, binary_ext) if binaries else None
    if primary is not None:
        binary = {"name": primary.name, "hash": compute_sha256(primary), "size": primary.stat().st_size}
    elif binaries:
        logger.warning(f"No staged binary found for {component} in {artifacts_dir}")

    repo = f"{org}/{component}" if org else component
    manifest = {
        "component": component,
        "version": version_tag,
        "commit": commit,
        "build_date": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "platform": platform,
        "source": {
            "repo": repo,
            "tag": version_tag,
            "commit": commit,
            "url": f"https://github.com/{repo}/releases/tag/{version_tag}",
        },
        "binary": binary,
        "reproducible": False,
        "build_method": build_method,
    }

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    output_file.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    logger.info(f"Generated component manifest: {output_file}")
    return output_file
