"""SHA-256 checksum files.

A checksum file has one `<sha256>  <name>` line per artifact, sorted by name,
in the format produced and consumed by `sha256sum`.
"""

import hashlib
from pathlib import Path
from typing import Dict, Iterable, List

from ..errors import MissingArtifact

CHECKSUM_FILE = "SHA256SUMS"
CHUNK_SIZE = 8192


def compute_sha256(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Compute the SHA-256 hex digest of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def format_checksums(entries: Dict[str, str]) -> str:
    """Render {name: sha256} as checksum file text, sorted by name."""
    return "".join(f"{digest}  {name}\n" for name, digest in sorted(entries.items()))


def write_checksum_file(directory: Path, files: Iterable[Path], name: str = CHECKSUM_FILE) -> Path:
    """Write a fresh checksum file covering `files` into `directory`.

    The file is always regenerated, never appended to.
    """
    entries = {path.name: compute_sha256(path) for path in files}
    checksum_file = directory / name
    checksum_file.write_text(format_checksums(entries), encoding="utf-8")
    return checksum_file


def parse_checksums(text: str) -> Dict[str, str]:
    """Parse checksum file text into {name: sha256}.

    Accepts both text mode ("<sha>  <name>") and binary mode ("<sha> *<name>")
    lines; blank lines and comments are ignored.
    """
    entries: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        parts = line.split(None, 1)
        if len(parts) != 2:
            raise ValueError(f"Malformed checksum line: {line!r}")
        digest, name = parts
        entries[name.lstrip("*").strip()] = digest.lower()
    return entries


def parse_checksum_file(path: Path) -> Dict[str, str]:
    return parse_checksums(Path(path).read_text(encoding="utf-8"))


def verify_checksums(directory: Path, checksum_file: Path) -> List[str]:
    """Verify every file listed in a checksum file.

    Args:
        directory: Directory holding the listed files
        checksum_file: Path to the checksum file

    Returns:
        Names of files whose digest does not match (empty when all match)

    Raises:
        MissingArtifact: If a listed file does not exist
    """
    mismatches = []
    for name, expected in parse_checksum_file(checksum_file).items():
        path = directory / name
        if not path.is_file():
            raise MissingArtifact(name, directory.name, str(path))
        if compute_sha256(path) != expected:
            mismatches.append(name)
    return mismatches
