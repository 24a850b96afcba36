"""Release finalization: manifest, notes, tagging, release objects and signing."""

from .finalizer import FinalizeResult, FinalizeState, ReleaseFinalizer
from .manifest import RELEASE_MANIFEST_FILE, ReleaseManifest
from .notes import render_release_notes, write_release_notes
from .scm import GitHubReleases, GitSourceControl, SourceControlHost
from .signer import ReleaseSigner, SigningReport, SigningSkip

__all__ = [
    "FinalizeResult",
    "FinalizeState",
    "ReleaseFinalizer",
    "RELEASE_MANIFEST_FILE",
    "ReleaseManifest",
    "render_release_notes",
    "write_release_notes",
    "GitHubReleases",
    "GitSourceControl",
    "SourceControlHost",
    "ReleaseSigner",
    "SigningReport",
    "SigningSkip",
]
