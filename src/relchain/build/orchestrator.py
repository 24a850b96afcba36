"""
Release pipeline orchestration.

This module coordinates a full release run across every component:
- Optionally cloning or updating the component checkouts
- Version resolution from the anchor component
- Dependency ordering from the declared graph
- Build requirement analysis against the release index
- Building missing components against local path dependencies, then tests
- Publishing libraries in dependency order
- Rebuilding final binaries against the published libraries
- Artifact collection and signing
- Tagging and release creation, then the version bump
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..artifacts import ArtifactCollector, CollectedArtifacts, generate_component_manifest
from ..config.features import BASE_VARIANT, EXPERIMENTAL_VARIANT
from ..config.pipeline_config import PlatformSpec, ReleaseConfig
from ..config.versions import Component, VersionResolver, VersionsManifest, write_version_bump
from ..errors import ManifestError, MissingArtifact, PublishFailure, ReleaseError
from ..graph import DependencyGraph
from ..packages import GitHubReleaseIndex, ReleaseAssetDownloader
from ..publish import CratesRegistry, PackageRegistry, Publisher, PublishReport
from ..release import (
    FinalizeResult,
    GitHubReleases,
    GitSourceControl,
    ReleaseFinalizer,
    ReleaseManifest,
    ReleaseSigner,
    SigningReport,
    SourceControlHost,
    render_release_notes,
)
from ..release.notes import write_release_notes
from .builder import LOCAL_MODE, REGISTRY_MODE, BuildReport, ComponentBuilder
from .executor import CommandExecutor
from .requirements import BuildAction, BuildPlan, BuildRequirementAnalyzer, ReleaseIndex

logger = logging.getLogger(__name__)

STAGES = (
    "setup",
    "resolve",
    "graph",
    "analyze",
    "build",
    "test",
    "publish",
    "final-build",
    "collect",
    "sign",
    "finalize",
    "bump",
    "complete",
)


def setup_workspace(
    manifest: VersionsManifest,
    scm: SourceControlHost,
    ref: Optional[str] = None,
    show_progress: bool = True,
) -> Dict[str, str]:
    """Clone or update the checkout of every component repository.

    Args:
        manifest: Version manifest naming the components
        scm: Source control host that owns the workspace
        ref: Tag or branch to check out everywhere; None keeps each
            checkout on its current branch
        show_progress: Whether to print one line per repository

    Returns:
        {repo: "cloned" | "updated"}

    Raises:
        CheckoutFailure: If a repository cannot be prepared
    """
    actions: Dict[str, str] = {}
    for component in manifest.components.values():
        repo = component.repo_name
        if repo in actions:
            continue
        actions[repo] = scm.clone_or_update(repo, ref)
        if show_progress:
            print(f"  {repo:<24} {actions[repo]}")
    return actions


@dataclass
class PipelineOptions:
    """Options for one release run."""

    version: Optional[str] = None
    platforms: List[str] = field(default_factory=list)
    variants: List[str] = field(default_factory=lambda: [BASE_VARIANT, EXPERIMENTAL_VARIANT])
    components: List[str] = field(default_factory=list)
    setup: bool = False
    checkout_ref: Optional[str] = None
    dry_run: bool = False
    skip_tagging: bool = False
    skip_publish: bool = False
    skip_tests: bool = False
    bump_manifest: bool = True
    max_workers: int = 1


@dataclass
class PipelineResult:
    """Result of a release run; `stage` is the last stage reached or the one that failed."""

    success: bool
    version: Optional[str] = None
    stage: str = "resolve"
    plan: Optional[BuildPlan] = None
    build_report: BuildReport = field(default_factory=BuildReport)
    publish_report: Optional[PublishReport] = None
    collected: List[CollectedArtifacts] = field(default_factory=list)
    signing_report: Optional[SigningReport] = None
    finalize_result: Optional[FinalizeResult] = None
    release_manifest: Optional[ReleaseManifest] = None
    error: Optional[ReleaseError] = None
    duration: float = 0.0


class ReleaseOrchestrator:
    """
    Orchestrates a complete release across the component chain.

    Collaborators default to the real implementations (GitHub release index,
    crates.io, git + GitHub releases) and can be replaced for testing.

    Example usage:
        manifest = VersionsManifest.from_file(Path("versions.toml"))
        config = ReleaseConfig.load(Path("relchain.ini"))
        orchestrator = ReleaseOrchestrator(manifest, config, versions_path=Path("versions.toml"))
        result = orchestrator.run(PipelineOptions(version="0.2.0", platforms=["linux-x86_64"]))
        if not result.success:
            print(f"Failed at {result.stage}: {result.error}")
    """

    def __init__(
        self,
        manifest: VersionsManifest,
        config: ReleaseConfig,
        index: Optional[ReleaseIndex] = None,
        registry: Optional[PackageRegistry] = None,
        scm: Optional[SourceControlHost] = None,
        executor: Optional[CommandExecutor] = None,
        builder: Optional[ComponentBuilder] = None,
        collector: Optional[ArtifactCollector] = None,
        signer: Optional[ReleaseSigner] = None,
        downloader: Optional[ReleaseAssetDownloader] = None,
        versions_path: Optional[Path] = None,
        show_progress: bool = True,
        verbose: bool = False,
    ):
        self.manifest = manifest
        self.config = config
        self.executor = executor or CommandExecutor(show_progress=verbose)
        self.index = index or GitHubReleaseIndex(config.org, config.github_token, config.api_url)
        self.registry = registry or CratesRegistry(
            registry_url=config.registry_url,
            token=config.registry_token,
            executor=self.executor,
            log_dir=config.log_dir,
            publish_timeout=config.publish_timeout,
        )
        self.scm = scm or GitSourceControl(
            config.workspace,
            executor=self.executor,
            releases=GitHubReleases(config.org, config.github_token, config.api_url),
            org=config.org,
        )
        self.builder = builder or ComponentBuilder(config, self.executor, show_progress=show_progress)
        self.collector = collector or ArtifactCollector(config.artifacts_dir, show_progress=show_progress)
        self.signer = signer or ReleaseSigner(
            config.artifacts_dir / "signatures", key=config.signing_key, executor=self.executor
        )
        self.downloader = downloader
        self.versions_path = versions_path
        self.show_progress = show_progress
        self.verbose = verbose

    def _stage(self, result: PipelineResult, stage: str) -> None:
        result.stage = stage
        logger.info(f"Stage: {stage}")
        if self.show_progress:
            print(f"[{STAGES.index(stage) + 1}/{len(STAGES)}] {stage}")

    def run(self, options: PipelineOptions) -> PipelineResult:
        """
        Execute the release pipeline.

        Args:
            options: Pipeline options

        Returns:
            PipelineResult; fatal errors are reported in `error` with the
            failing `stage`. KeyboardInterrupt propagates.
        """
        start_time = time.time()
        result = PipelineResult(success=False)
        try:
            self._run(options, result)
            result.success = True
        except ReleaseError as e:
            logger.error(f"Release failed at stage '{result.stage}': {e}")
            result.error = e
        result.duration = time.time() - start_time
        return result

    def _run(self, options: PipelineOptions, result: PipelineResult) -> None:
        # Phase 0: checkouts
        if options.setup:
            self._stage(result, "setup")
            setup_workspace(self.manifest, self.scm, options.checkout_ref, show_progress=self.show_progress)

        # Phase 1: version
        self._stage(result, "resolve")
        version = VersionResolver(self.manifest).resolve(options.version)
        result.version = version
        tag = VersionResolver.tag_for(version)
        logger.info(f"Releasing version {version} ({tag})")

        # Phase 2: ordering
        self._stage(result, "graph")
        graph = DependencyGraph.from_manifest(self.manifest)
        for name in options.components:
            self.manifest.get(name)
        order = graph.topological_order(options.components or None)
        components = [self.manifest.get(name) for name in order]

        platform_names = options.platforms or list(self.config.platforms)
        platforms = [self.config.get_platform(name) for name in platform_names]
        for variant in options.variants:
            if not self.config.features.has_variant(variant):
                raise ManifestError(f"Unknown variant '{variant}'")

        # Phase 3: decide what to build
        self._stage(result, "analyze")
        analyzer = BuildRequirementAnalyzer(self.manifest, self.index, show_progress=self.verbose)
        plan = analyzer.analyze(order, [p.name for p in platforms], version)
        result.plan = plan

        # Phase 4: build missing components against local checkouts
        self._stage(result, "build")
        local_reports = self._build_platforms(components, platforms, options, plan, LOCAL_MODE)
        for report in local_reports.values():
            result.build_report.merge(report)

        # Phase 5: tests, before anything leaves this machine
        if not options.skip_tests:
            self._stage(result, "test")
            self._run_tests(components, platforms, plan, result, options.variants[0])

        # Phase 6: publish libraries
        publisher = Publisher(
            self.manifest,
            graph,
            self.registry,
            self.config.workspace,
            poll_interval=self.config.registry_poll_interval,
            poll_timeout=self.config.registry_poll_timeout,
            dry_run=options.dry_run,
            show_progress=self.show_progress,
        )
        published = False
        if not options.skip_publish:
            self._stage(result, "publish")
            to_publish = [name for name in order if plan.decision(name, platforms[0].name).needs_build]
            report = publisher.publish_all(to_publish, version, exclude=result.build_report.skipped)
            result.publish_report = report
            if not report.ok:
                problems = {**report.failed, **report.blocked}
                name = next(iter(problems))
                raise PublishFailure(name, reason="; ".join(f"{k}: {v}" for k, v in problems.items()))
            published = not options.dry_run

        # Phase 7: final binaries against the published libraries
        final_reports = local_reports
        if published:
            self._stage(result, "final-build")
            binary_components = [
                c for c in components
                if c.produces_binaries and c.name not in result.build_report.skipped
            ]
            for component in binary_components:
                if any(plan.decision(component.name, p.name).needs_build for p in platforms):
                    publisher.pin_dependencies(component, version)
            final_reports = self._build_platforms(binary_components, platforms, options, plan, REGISTRY_MODE)
            for platform_name, report in final_reports.items():
                result.build_report.merge(report)
                # Libraries are only built locally; their results still count
                replaced = set(report.by_component()) | set(report.skipped)
                kept = [r for r in local_reports[platform_name].results if r.component not in replaced]
                final_reports[platform_name] = BuildReport(kept + report.results, dict(report.skipped))

        # Phase 8: collect archives
        self._stage(result, "collect")
        downloads_dir = self.config.artifacts_dir / "downloads"
        for platform in platforms:
            for variant in options.variants:
                binaries = self._binaries_for(platform, variant, final_reports[platform.name])
                binaries.update(self._downloaded_binaries(components, platform, variant, plan, downloads_dir))
                result.collected.append(
                    self.collector.collect(self.config.bundle, version, platform.name, variant, binaries)
                )
        self._write_component_manifests(components, platforms, tag, result)

        # Phase 9: sign
        self._stage(result, "sign")
        result.signing_report = self.signer.sign(
            [a.path for c in result.collected for a in c.artifacts],
            [c.checksum_file for c in result.collected]
            + [c.archive_checksum_file for c in result.collected if c.archive_checksum_file],
            tag,
        )
        for skip in result.signing_report.skipped:
            logger.info(f"Not signed: {skip.target} ({skip.reason})")

        # Phase 10: tag and release
        self._stage(result, "finalize")
        release_manifest = ReleaseManifest.build(
            version,
            {c.name: version for c in components if c.name not in result.build_report.skipped},
            result.collected,
            commit=self._orchestrator_commit(),
            commits={c.name: self._head_commit(c) for c in components},
        )
        release_manifest = release_manifest.with_notes(render_release_notes(release_manifest))
        result.release_manifest = release_manifest
        manifest_file = release_manifest.write(self.config.artifacts_dir)
        write_release_notes(release_manifest, self.config.artifacts_dir)

        assets = [path for c in result.collected for path in c.release_assets()] + [manifest_file]
        repos: List[str] = []
        for component in components:
            if component.name not in result.build_report.skipped and component.repo_name not in repos:
                repos.append(component.repo_name)

        finalizer = ReleaseFinalizer(
            self.scm, self._release_repo(components), dry_run=options.dry_run, show_progress=self.show_progress
        )
        result.finalize_result = finalizer.finalize(
            release_manifest, repos, assets, skip_tagging=options.skip_tagging
        )

        # Phase 11: single explicit manifest mutation
        if options.bump_manifest and not options.dry_run and self.versions_path is not None:
            self._stage(result, "bump")
            write_version_bump(self.versions_path, version)
            logger.info(f"Updated {self.versions_path} to {version}")

        self._stage(result, "complete")

    def _build_platforms(
        self,
        components: List[Component],
        platforms: List[PlatformSpec],
        options: PipelineOptions,
        plan: BuildPlan,
        dependency_mode: str,
    ) -> Dict[str, BuildReport]:
        def build_platform(platform: PlatformSpec) -> BuildReport:
            needed = [
                c for c in components
                if plan.decision(c.name, platform.name).action == BuildAction.BUILD
            ]
            report = BuildReport()
            for variant in options.variants:
                report.merge(self.builder.build_all(needed, variant, platform, dependency_mode))
            return report

        if options.max_workers > 1 and len(platforms) > 1:
            with ThreadPoolExecutor(max_workers=options.max_workers) as pool:
                reports = list(pool.map(build_platform, platforms))
        else:
            reports = [build_platform(platform) for platform in platforms]
        return {platform.name: report for platform, report in zip(platforms, reports)}

    def _run_tests(
        self,
        components: List[Component],
        platforms: List[PlatformSpec],
        plan: BuildPlan,
        result: PipelineResult,
        variant: str,
    ) -> None:
        # Cross-compiled targets cannot run their tests on this host
        native = [p for p in platforms if not p.target]
        if not native:
            logger.warning("No native platform selected, skipping tests")
            return
        platform = native[0]
        for component in components:
            if component.name in result.build_report.skipped:
                continue
            if not self.config.builds_on(component.name, platform.name):
                continue
            if not plan.decision(component.name, platform.name).needs_build:
                continue
            self.builder.test(component, platform, variant)

    def _binaries_for(
        self, platform: PlatformSpec, variant: str, report: BuildReport
    ) -> Dict[str, Dict[str, Path]]:
        binaries: Dict[str, Dict[str, Path]] = {}
        for build in report.results:
            if build.variant == variant and build.platform == platform.name and build.binaries:
                binaries[build.component] = dict(build.binaries)
        return binaries

    def _downloaded_binaries(
        self,
        components: List[Component],
        platform: PlatformSpec,
        variant: str,
        plan: BuildPlan,
        downloads_dir: Path,
    ) -> Dict[str, Dict[str, Path]]:
        binaries: Dict[str, Dict[str, Path]] = {}
        for component in components:
            if not component.produces_binaries:
                continue
            if plan.decision(component.name, platform.name).needs_build:
                continue
            if self.downloader is None:
                logger.warning(
                    f"{component.name} {plan.tag} already released for {platform.name}; "
                    "no downloader configured, not re-archiving its binaries"
                )
                continue
            assets = self.index.list_assets(component, plan.tag)
            binaries[component.name] = self.downloader.fetch_binaries(
                component, platform.name, variant, platform.binary_ext, assets, downloads_dir
            )
        return binaries

    def _write_component_manifests(
        self, components: List[Component], platforms: List[PlatformSpec], tag: str, result: PipelineResult
    ) -> None:
        manifests_dir = self.config.artifacts_dir / "manifests"
        for batch in result.collected:
            if batch.variant != BASE_VARIANT:
                continue
            platform = self.config.get_platform(batch.platform)
            for component in components:
                if component.name in result.build_report.skipped:
                    continue
                generate_component_manifest(
                    component.name,
                    tag,
                    self._head_commit(component),
                    batch.platform,
                    batch.staging_dir,
                    binaries=component.binaries,
                    org=self.config.org,
                    output_file=manifests_dir
                    / f"component-manifest-{component.name}-{tag}-{batch.platform}.json",
                    binary_ext=platform.binary_ext,
                )

    def _git_head(self, repo_dir: Path) -> str:
        if not repo_dir.is_dir():
            return ""
        commit = self.executor.run(["git", "rev-parse", "HEAD"], cwd=repo_dir, timeout=60)
        return commit.output.strip() if commit.success else ""

    def _head_commit(self, component: Component) -> str:
        # The checkout that was built wins over the commit recorded in versions.toml
        return self._git_head(self.config.workspace / component.repo_name) or component.git_commit or ""

    def _orchestrator_commit(self) -> str:
        root = self.versions_path.parent if self.versions_path is not None else Path.cwd()
        return self._git_head(root)

    def _release_repo(self, components: List[Component]) -> str:
        if self.config.release_repo:
            return self.config.release_repo
        if self.config.bundle in self.manifest:
            return self.manifest.get(self.config.bundle).repo_name
        if not components:
            raise MissingArtifact(self.config.bundle, "release", "no components to release")
        return components[-1].repo_name
