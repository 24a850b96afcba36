"""Artifact collection, archiving and checksums."""

from .checksums import (
    CHECKSUM_FILE,
    compute_sha256,
    parse_checksum_file,
    parse_checksums,
    verify_checksums,
    write_checksum_file,
)
from .collector import Artifact, ArtifactCollector, CollectedArtifacts
from .component_manifest import generate_component_manifest

__all__ = [
    "CHECKSUM_FILE",
    "Artifact",
    "ArtifactCollector",
    "CollectedArtifacts",
    "compute_sha256",
    "generate_component_manifest",
    "parse_checksum_file",
    "parse_checksums",
    "verify_checksums",
    "write_checksum_file",
]
