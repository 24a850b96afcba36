"""Artifact collection and archiving.

Gathers built binaries for one (platform, variant) into a flat staging
directory, generates a fresh SHA256SUMS and produces `.tar.gz` and `.zip`
archives with every entry at the archive root.

Archives are reproducible: entries are sorted, timestamps fixed, ownership
and permissions normalised and the gzip header carries no mtime.
"""

import gzip
import io
import logging
import os
import shutil
import tarfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..config.features import FeatureSets
from ..errors import ManifestError, MissingArtifact
from .checksums import CHECKSUM_FILE, compute_sha256, write_checksum_file

logger = logging.getLogger(__name__)

# 1980-01-01, the earliest timestamp a zip entry can carry
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
EXECUTABLE_MODE = 0o755
FILE_MODE = 0o644


@dataclass(frozen=True)
class Artifact:
    """A binary produced for one platform and variant, with its digest."""

    component: str
    platform: str
    variant: str
    path: Path
    sha256: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class CollectedArtifacts:
    """Result of collecting one (platform, variant)."""

    platform: str
    variant: str
    staging_dir: Path
    checksum_file: Path
    archives: List[Path] = field(default_factory=list)
    artifacts: List[Artifact] = field(default_factory=list)
    archive_checksum_file: Optional[Path] = None

    def release_assets(self) -> List[Path]:
        """Files to attach to the release object."""
        assets = list(self.archives)
        if self.archive_checksum_file is not None:
            assets.append(self.archive_checksum_file)
        return assets


def source_date_epoch() -> int:
    """Timestamp used for archive entries (SOURCE_DATE_EPOCH, default 0)."""
    try:
        return int(os.environ.get("SOURCE_DATE_EPOCH", "0"))
    except ValueError:
        return 0


class ArtifactCollector:
    """Collects binaries into platform archives."""

    def __init__(self, artifacts_dir: Path, show_progress: bool = True):
        """Initialize artifact collector.

        Args:
            artifacts_dir: Output directory for staging dirs and archives
            show_progress: Whether to print progress
        """
        self.artifacts_dir = Path(artifacts_dir)
        self.show_progress = show_progress

    @staticmethod
    def bundle_name(bundle: str, variant: str) -> str:
        return f"{bundle}{FeatureSets.variant_suffix(variant)}"

    def staging_dir(self, bundle: str, platform: str, variant: str) -> Path:
        return self.artifacts_dir / f"{self.bundle_name(bundle, variant)}-{platform}"

    def archive_base(self, bundle: str, version: str, platform: str, variant: str) -> str:
        return f"{self.bundle_name(bundle, variant)}-{version}-{platform}"

    def collect(
        self,
        bundle: str,
        version: str,
        platform: str,
        variant: str,
        binaries: Dict[str, Dict[str, Path]],
    ) -> CollectedArtifacts:
        """
        Stage binaries, write checksums and create archives.

        Args:
            bundle: Archive base name (e.g., "bllvm")
            version: Release version (e.g., "0.2.0")
            platform: Platform name (e.g., "linux-x86_64")
            variant: Variant name
            binaries: {component: {binary name: built path}}

        Returns:
            CollectedArtifacts

        Raises:
            MissingArtifact: If a built binary does not exist
            ManifestError: If two components produce a binary with the same name
        """
        staging = self.staging_dir(bundle, platform, variant)
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)

        if self.show_progress:
            print(f"Collecting {variant} artifacts for {platform} into {staging}...")

        artifacts: List[Artifact] = []
        staged: Dict[str, str] = {}
        for component in sorted(binaries):
            for name, source in sorted(binaries[component].items()):
                source = Path(source)
                if not source.is_file():
                    raise MissingArtifact(component, platform, str(source))
                dest = staging / source.name
                if dest.name in staged:
                    raise ManifestError(
                        f"Binary name collision: {dest.name} is produced by both {staged[dest.name]} and {component}"
                    )
                staged[dest.name] = component
                shutil.copy2(source, dest)
                os.chmod(dest, EXECUTABLE_MODE)
                artifacts.append(Artifact(component, platform, variant, dest, compute_sha256(dest)))
                logger.debug(f"Staged {component}/{name} -> {dest}")

        if not artifacts:
            logger.warning(f"No binaries to collect for {platform} ({variant})")

        checksum_file = write_checksum_file(staging, [a.path for a in artifacts])

        base = self.archive_base(bundle, version, platform, variant)
        members = sorted(p for p in staging.iterdir() if p.is_file())
        tar_path = self.artifacts_dir / f"{base}.tar.gz"
        zip_path = self.artifacts_dir / f"{base}.zip"
        write_tar_gz(tar_path, members)
        write_zip(zip_path, members)

        archive_checksums = write_checksum_file(
            self.artifacts_dir,
            [tar_path, zip_path],
            name=f"{CHECKSUM_FILE}-{self.bundle_name(bundle, variant)}-{platform}",
        )

        if self.show_progress:
            print(f"Created {tar_path.name} and {zip_path.name}")

        return CollectedArtifacts(
            platform=platform,
            variant=variant,
            staging_dir=staging,
            checksum_file=checksum_file,
            archives=[tar_path, zip_path],
            artifacts=artifacts,
            archive_checksum_file=archive_checksums,
        )


def _entry_mode(path: Path) -> int:
    return FILE_MODE if path.name.startswith(CHECKSUM_FILE) else EXECUTABLE_MODE


def write_tar_gz(archive_path: Path, members: List[Path]) -> Path:
    """Write a reproducible .tar.gz with `members` at the archive root."""
    mtime = source_date_epoch()
    with open(archive_path, "wb") as raw:
        with gzip.GzipFile(filename="", mode="wb", fileobj=raw, mtime=0) as gz:
            with tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
                for path in sorted(members, key=lambda p: p.name):
                    data = path.read_bytes()
                    info = tarfile.TarInfo(name=path.name)
                    info.size = len(data)
                    info.mtime = mtime
                    info.mode = _entry_mode(path)
                    info.uid = info.gid = 0
                    info.uname = info.gname = ""
                    tar.addfile(info, io.BytesIO(data))
    return archive_path


def write_zip(archive_path: Path, members: List[Path]) -> Path:
    """Write a reproducible .zip with `members` at the archive root."""
    with zipfile.ZipFile(archive_path, "w") as zf:
        for path in sorted(members, key=lambda p: p.name):
            info = zipfile.ZipInfo(path.name, date_time=ZIP_EPOCH)
            info.compress_type = zipfile.ZIP_DEFLATED
            info.external_attr = (0o100000 | _entry_mode(path)) << 16
            zf.writestr(info, path.read_bytes())
    return archive_path
