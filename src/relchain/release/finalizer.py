"""Release finalization: tag every repository, then publish one release.

State machine:
    PENDING -> TAGGING -> PUBLISHING -> COMPLETE
                                    \\-> FAILED

Tagging is per repository and may partially fail without aborting; tags
that already exist are skipped, so finalization can be safely re-run.
Publishing the release object is all-or-nothing.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..errors import MissingArtifact, ReleaseCreationError, TagFailure
from .manifest import ReleaseManifest
from .scm import SourceControlHost

logger = logging.getLogger(__name__)


class FinalizeState(Enum):
    PENDING = "pending"
    TAGGING = "tagging"
    PUBLISHING = "publishing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class FinalizeResult:
    """Outcome of finalization."""

    state: FinalizeState
    tagged: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed_tags: Dict[str, str] = field(default_factory=dict)
    release_url: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.state == FinalizeState.COMPLETE


class ReleaseFinalizer:
    """Tags component repositories and creates the release object."""

    def __init__(
        self,
        scm: SourceControlHost,
        release_repo: str,
        dry_run: bool = False,
        show_progress: bool = True,
    ):
        """Initialize release finalizer.

        Args:
            scm: Source control host
            release_repo: Repository that receives the release object
            dry_run: Report what would happen without tagging or publishing
            show_progress: Whether to print progress
        """
        self.scm = scm
        self.release_repo = release_repo
        self.dry_run = dry_run
        self.show_progress = show_progress
        self.state = FinalizeState.PENDING

    def _transition(self, state: FinalizeState) -> None:
        logger.info(f"Release finalization: {self.state.value} -> {state.value}")
        self.state = state

    def finalize(
        self,
        manifest: ReleaseManifest,
        repos: Sequence[str],
        assets: Sequence[Path],
        skip_tagging: bool = False,
    ) -> FinalizeResult:
        """
        Tag repositories and publish the release.

        Args:
            manifest: Release manifest (notes must already be rendered)
            repos: Repositories to tag
            assets: Archives and checksum files to attach
            skip_tagging: Skip the tagging state entirely

        Returns:
            FinalizeResult

        Raises:
            MissingArtifact: If an asset does not exist (nothing is started)
            ReleaseCreationError: If the release object cannot be created
        """
        self.state = FinalizeState.PENDING
        for asset in assets:
            if not Path(asset).is_file():
                raise MissingArtifact(self.release_repo, "release", str(asset))

        result = FinalizeResult(state=self.state)

        if not skip_tagging:
            self._transition(FinalizeState.TAGGING)
            self._tag_all(manifest, repos, result)

        self._transition(FinalizeState.PUBLISHING)
        if self.dry_run:
            if self.show_progress:
                print(f"[dry-run] Would create release {manifest.tag} in {self.release_repo} "
                      f"with {len(assets)} assets")
        else:
            try:
                result.release_url = self.scm.create_release(
                    self.release_repo, manifest.tag, manifest.notes, list(assets)
                )
            except ReleaseCreationError:
                self._transition(FinalizeState.FAILED)
                result.state = self.state
                raise

        self._transition(FinalizeState.COMPLETE)
        result.state = self.state

        if result.failed_tags:
            logger.warning(
                f"Release {manifest.tag} created, but these repositories were not tagged: "
                f"{', '.join(sorted(result.failed_tags))}"
            )
        return result

    def _tag_all(self, manifest: ReleaseManifest, repos: Sequence[str], result: FinalizeResult) -> None:
        message = f"Release {manifest.tag}"
        for repo in repos:
            try:
                if self.scm.tag_exists(repo, manifest.tag):
                    logger.info(f"Tag {manifest.tag} already exists in {repo}, skipping")
                    result.skipped.append(repo)
                    continue
                if self.dry_run:
                    if self.show_progress:
                        print(f"[dry-run] Would tag {repo} {manifest.tag}")
                    result.skipped.append(repo)
                    continue
                self.scm.create_tag(repo, manifest.tag, message)
                result.tagged.append(repo)
                if self.show_progress:
                    print(f"Tagged {repo} {manifest.tag}")
            except TagFailure as e:
                logger.error(str(e))
                result.failed_tags[repo] = e.detail
