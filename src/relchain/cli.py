"""
Command-line interface for relchain.

This module provides the `relchain` CLI tool for releasing a chain of
dependent Rust components.
"""

import argparse
import json
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from relchain import __version__
from relchain.artifacts import ArtifactCollector
from relchain.build import (
    LOCAL_MODE,
    REGISTRY_MODE,
    BuildRequirementAnalyzer,
    CommandExecutor,
    ComponentBuilder,
    check_toolchain,
)
from relchain.build.orchestrator import PipelineOptions, ReleaseOrchestrator, setup_workspace
from relchain.cli_utils import ErrorFormatter, PathValidator
from relchain.config import BASE_VARIANT, ReleaseConfig, VersionResolver, VersionsManifest, write_version_bump
from relchain.errors import ManifestError, MissingArtifact, ReleaseError
from relchain.graph import DependencyGraph
from relchain.log_setup import setup_logging
from relchain.packages import GitHubReleaseIndex, ReleaseAssetDownloader
from relchain.publish import check_dependency_chain
from relchain.release import GitSourceControl

DEFAULT_VERSIONS_FILE = "versions.toml"
DEFAULT_CONFIG_FILE = "relchain.ini"
BUILD_MODES = {"dev": LOCAL_MODE, "release": REGISTRY_MODE}


@dataclass
class CommonArgs:
    """Arguments shared by every command."""

    versions: Path = Path(DEFAULT_VERSIONS_FILE)
    config: Optional[Path] = None
    verbose: bool = False
    log_file: Optional[Path] = None


@dataclass
class ValidateArgs(CommonArgs):
    """Arguments for the validate command."""

    workspace: Optional[Path] = None


@dataclass
class OrderArgs(CommonArgs):
    """Arguments for the order command."""

    components: List[str] = field(default_factory=list)


@dataclass
class VersionArgs(CommonArgs):
    """Arguments for the version command."""

    next: bool = False
    set: Optional[str] = None
    write: bool = False


@dataclass
class PlanArgs(CommonArgs):
    """Arguments for the plan command."""

    platforms: List[str] = field(default_factory=list)
    version: Optional[str] = None


@dataclass
class BuildArgs(CommonArgs):
    """Arguments for the build command."""

    variant: str = BASE_VARIANT
    platform: Optional[str] = None
    mode: str = "dev"
    components: List[str] = field(default_factory=list)
    workspace: Optional[Path] = None


@dataclass
class CollectArgs(CommonArgs):
    """Arguments for the collect command."""

    platform: Optional[str] = None
    variant: str = BASE_VARIANT
    version: Optional[str] = None
    workspace: Optional[Path] = None
    artifacts_dir: Optional[Path] = None


@dataclass
class SetupArgs(CommonArgs):
    """Arguments for the setup command."""

    ref: Optional[str] = None
    workspace: Optional[Path] = None


@dataclass
class ReleaseArgs(CommonArgs):
    """Arguments for the release command."""

    version: Optional[str] = None
    platforms: List[str] = field(default_factory=list)
    variants: List[str] = field(default_factory=list)
    components: List[str] = field(default_factory=list)
    setup: bool = False
    ref: Optional[str] = None
    dry_run: bool = False
    skip_tagging: bool = False
    skip_tests: bool = False
    skip_publish: bool = False
    no_bump: bool = False
    max_workers: int = 1
    workspace: Optional[Path] = None
    artifacts_dir: Optional[Path] = None


def load_inputs(
    args: CommonArgs,
    workspace: Optional[Path] = None,
    artifacts_dir: Optional[Path] = None,
) -> Tuple[VersionsManifest, ReleaseConfig]:
    """Load the version manifest and pipeline settings.

    relchain.ini defaults to the file next to versions.toml. Command-line
    paths win over the environment and the ini file.
    """
    manifest = VersionsManifest.from_file(args.versions)
    config_path = args.config or args.versions.parent / DEFAULT_CONFIG_FILE
    config = ReleaseConfig.load(config_path)
    if workspace is not None:
        config.workspace = workspace
    if artifacts_dir is not None:
        config.artifacts_dir = artifacts_dir
    return manifest, config


def print_header() -> None:
    print(f"relchain Release Pipeline v{__version__}")
    print()


def validate_command(args: ValidateArgs) -> None:
    """Validate versions.toml and the component dependency chain.

    Examples:
        relchain validate                        # Validate ./versions.toml
        relchain validate --workspace ..         # Also check each Cargo.toml
    """
    print_header()

    try:
        manifest = VersionsManifest.from_file(args.versions)
        result = manifest.validate()

        warnings = list(result.warnings)
        if args.workspace is not None:
            warnings.extend(check_dependency_chain(manifest, args.workspace))

        for warning in warnings:
            ErrorFormatter.print_warning(warning)

        if not result.is_valid:
            ErrorFormatter.print_error("Validation failed!", "\n".join(result.errors))
            sys.exit(1)

        ErrorFormatter.print_success(f"{len(manifest)} components valid")
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def order_command(args: OrderArgs) -> None:
    """Print the build order, one component per line.

    Examples:
        relchain order                   # All components
        relchain order blvm-node         # blvm-node and its dependencies
    """
    try:
        manifest = VersionsManifest.from_file(args.versions)
        graph = DependencyGraph.from_manifest(manifest)
        for name in args.components:
            manifest.get(name)
        for name in graph.topological_order(args.components or None):
            print(name)
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def version_command(args: VersionArgs) -> None:
    """Show or bump the release version.

    Examples:
        relchain version                     # Current version
        relchain version --next              # Next patch version
        relchain version --next --write      # Bump versions.toml to the next version
        relchain version --set 0.3.0         # Set every component to 0.3.0
    """
    try:
        manifest = VersionsManifest.from_file(args.versions)
        resolver = VersionResolver(manifest)

        if args.set:
            version = resolver.resolve(args.set)
            write_version_bump(args.versions, version)
            ErrorFormatter.print_success(f"Updated {args.versions} to {version}")
        elif args.next:
            version = resolver.next_version()
            if args.write:
                write_version_bump(args.versions, version)
                ErrorFormatter.print_success(f"Updated {args.versions} to {version}")
            else:
                print(version)
        else:
            print(resolver.current_version())
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def plan_command(args: PlanArgs) -> None:
    """Print which components must be built and which already have releases.

    Output is JSON: {component: {platform: {build, download, version}}}.

    Examples:
        relchain plan --platform linux-x86_64
        relchain plan --platform linux-x86_64 --platform windows-x86_64 --version 0.2.0
    """
    try:
        manifest, config = load_inputs(args)
        version = VersionResolver(manifest).resolve(args.version)
        order = DependencyGraph.from_manifest(manifest).topological_order()
        platforms = [config.get_platform(name).name for name in args.platforms or config.platforms]

        index = GitHubReleaseIndex(config.org, config.github_token, config.api_url)
        plan = BuildRequirementAnalyzer(manifest, index, show_progress=False).analyze(
            order, platforms, version
        )
        print(json.dumps(plan.to_dict(), indent=2))
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def build_command(args: BuildArgs) -> None:
    """Build components for one variant and platform.

    Examples:
        relchain build                                  # Base variant, default platform
        relchain build --variant experimental           # Experimental feature set
        relchain build --platform windows-x86_64        # Cross-compile
        relchain build --mode release                   # Build against registry versions
        relchain build blvm-node                        # blvm-node and its dependencies
    """
    print_header()

    try:
        manifest, config = load_inputs(args, workspace=args.workspace)
        if not config.features.has_variant(args.variant):
            raise ManifestError(
                f"Unknown variant '{args.variant}'. Available variants: {', '.join(config.features.variants)}"
            )
        platform = config.get_platform(args.platform or next(iter(config.platforms)))

        graph = DependencyGraph.from_manifest(manifest)
        for name in args.components:
            manifest.get(name)
        components = [manifest.get(name) for name in graph.topological_order(args.components or None)]

        executor = CommandExecutor(show_progress=args.verbose)
        rustc = check_toolchain(executor)

        if args.verbose:
            print(f"Workspace: {config.workspace}")
            print(f"Platform: {platform.name}")
            print(f"Variant: {args.variant}")
            print(f"Mode: {args.mode}")
            print(f"rustc: {rustc}")
            print()
        else:
            print(f"Building {args.variant} for {platform.name}...")

        builder = ComponentBuilder(config, executor)
        start_time = time.time()
        report = builder.build_all(components, args.variant, platform, BUILD_MODES[args.mode])
        build_time = time.time() - start_time

        for name, reason in report.skipped.items():
            ErrorFormatter.print_warning(f"Skipped optional component {name}: {reason}")

        ErrorFormatter.print_success("Build successful!")
        binaries = report.binaries()
        if binaries:
            print()
            print("Binaries:")
            for name, path in sorted(binaries.items()):
                print(f"  {name:<20} {path}")
        print()
        print(f"Build time: {build_time:.2f}s")
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def collect_command(args: CollectArgs) -> None:
    """Archive already-built binaries for one platform and variant.

    Examples:
        relchain collect --platform linux-x86_64
        relchain collect --platform linux-x86_64 --variant experimental --version 0.2.0
    """
    print_header()

    try:
        manifest, config = load_inputs(args, workspace=args.workspace, artifacts_dir=args.artifacts_dir)
        version = args.version or VersionResolver(manifest).current_version()
        platform = config.get_platform(args.platform or next(iter(config.platforms)))
        builder = ComponentBuilder(config, show_progress=False)

        binaries: Dict[str, Dict[str, Path]] = {}
        for name in DependencyGraph.from_manifest(manifest).topological_order():
            component = manifest.get(name)
            if not component.produces_binaries or not config.builds_on(name, platform.name):
                continue
            try:
                binaries[name] = builder.locate_binaries(component, platform, args.variant)
            except MissingArtifact as e:
                if not builder.is_optional(component):
                    raise
                ErrorFormatter.print_warning(f"Skipping optional component {name}: {e}")

        collector = ArtifactCollector(config.artifacts_dir)
        collected = collector.collect(config.bundle, version, platform.name, args.variant, binaries)

        ErrorFormatter.print_success(f"Collected {len(collected.artifacts)} binaries")
        print()
        for archive in collected.archives:
            print(f"Archive: {archive}")
        print(f"Checksums: {collected.checksum_file}")
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def setup_command(args: SetupArgs) -> None:
    """Clone missing component repositories and update the others.

    Examples:
        relchain setup                          # Clone or update every repository
        relchain setup --ref v0.2.0             # Check out v0.2.0 everywhere
        relchain setup --workspace ~/src/blvm   # Use another workspace
    """
    print_header()

    try:
        manifest, config = load_inputs(args, workspace=args.workspace)
        scm = GitSourceControl(
            config.workspace, executor=CommandExecutor(show_progress=args.verbose), org=config.org
        )

        print(f"Workspace: {config.workspace}")
        if args.ref:
            print(f"Ref: {args.ref}")
        print()

        actions = setup_workspace(manifest, scm, args.ref)

        ErrorFormatter.print_success(f"{len(actions)} repositories ready")
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def release_command(args: ReleaseArgs) -> None:
    """Run the full release pipeline.

    Examples:
        relchain release                                # Next patch version, default platform
        relchain release --version 0.2.0                # Explicit version
        relchain release --platform linux-x86_64 --platform windows-x86_64
        relchain release --variant base                 # Base variant only
        relchain release --dry-run                      # Build and verify, publish nothing
        relchain release --setup --ref main             # Clone or update checkouts first
    """
    print_header()

    try:
        manifest, config = load_inputs(args, workspace=args.workspace, artifacts_dir=args.artifacts_dir)

        executor = CommandExecutor(show_progress=args.verbose)
        check_toolchain(executor)

        options = PipelineOptions(
            version=args.version,
            platforms=args.platforms,
            components=args.components,
            setup=args.setup,
            checkout_ref=args.ref,
            dry_run=args.dry_run,
            skip_tagging=args.skip_tagging,
            skip_publish=args.skip_publish,
            skip_tests=args.skip_tests,
            bump_manifest=not args.no_bump,
            max_workers=args.max_workers,
        )
        if args.variants:
            options.variants = args.variants

        orchestrator = ReleaseOrchestrator(
            manifest,
            config,
            executor=executor,
            downloader=ReleaseAssetDownloader(token=config.github_token),
            versions_path=args.versions,
            verbose=args.verbose,
        )
        result = orchestrator.run(options)

        if not result.success:
            error = result.error
            ErrorFormatter.print_error(
                ErrorFormatter.error_title(error), f"Stage: {result.stage}\n\n{error}"
            )
            sys.exit(1)

        finalize = result.finalize_result
        if finalize is not None:
            for repo, detail in finalize.failed_tags.items():
                ErrorFormatter.print_warning(f"Tag v{result.version} not created in {repo}: {detail}")
        for name, reason in result.build_report.skipped.items():
            ErrorFormatter.print_warning(f"Skipped optional component {name}: {reason}")
        if result.publish_report is not None:
            for name, reason in result.publish_report.skipped.items():
                ErrorFormatter.print_warning(f"Publish of {name} not verified: {reason}")

        if args.dry_run:
            ErrorFormatter.print_success(f"Dry run of {result.version} complete; nothing was published")
        else:
            ErrorFormatter.print_success(f"Released {result.version}")
        print()
        for batch in result.collected:
            for archive in batch.archives:
                print(f"Archive: {archive}")
        if finalize is not None and finalize.release_url:
            print(f"Release: {finalize.release_url}")
        print(f"Total time: {result.duration:.2f}s")
        sys.exit(0)

    except ReleaseError as e:
        ErrorFormatter.handle_release_error(e, args.verbose)
    except FileNotFoundError as e:
        ErrorFormatter.handle_file_not_found(e)
    except PermissionError as e:
        ErrorFormatter.handle_permission_error(e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--versions",
        type=Path,
        default=Path(DEFAULT_VERSIONS_FILE),
        help="Version manifest (default: versions.toml)",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Pipeline settings (default: relchain.ini next to the version manifest)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file",
    )


def common_kwargs(parsed_args: argparse.Namespace) -> dict:
    return {
        "versions": parsed_args.versions,
        "config": parsed_args.config,
        "verbose": parsed_args.verbose,
        "log_file": parsed_args.log_file,
    }


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relchain",
        description="relchain - Release orchestration for dependent Rust components",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"relchain {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate the version manifest",
    )
    validate_parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Also check each component's Cargo.toml in this directory",
    )
    add_common_arguments(validate_parser)

    # Order command
    order_parser = subparsers.add_parser(
        "order",
        help="Print the topological build order",
    )
    order_parser.add_argument(
        "components",
        nargs="*",
        help="Restrict to these components and their dependencies",
    )
    add_common_arguments(order_parser)

    # Version command
    version_parser = subparsers.add_parser(
        "version",
        help="Show or bump the release version",
    )
    version_parser.add_argument(
        "--next",
        action="store_true",
        help="Show the next patch version",
    )
    version_parser.add_argument(
        "--set",
        default=None,
        help="Rewrite the manifest to this version (X.Y.Z)",
    )
    version_parser.add_argument(
        "--write",
        action="store_true",
        help="With --next, rewrite the manifest",
    )
    add_common_arguments(version_parser)

    # Plan command
    plan_parser = subparsers.add_parser(
        "plan",
        help="Print which components need building",
    )
    plan_parser.add_argument(
        "-p",
        "--platform",
        dest="platforms",
        action="append",
        default=[],
        help="Platform to plan for (repeatable, default: configured platforms)",
    )
    plan_parser.add_argument(
        "--version",
        dest="release_version",
        default=None,
        help="Target version (default: next patch version)",
    )
    add_common_arguments(plan_parser)

    # Build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build components for one variant and platform",
    )
    build_parser.add_argument(
        "components",
        nargs="*",
        help="Components to build (default: all), dependencies included",
    )
    build_parser.add_argument(
        "--variant",
        default=BASE_VARIANT,
        help="Feature variant (default: base)",
    )
    build_parser.add_argument(
        "-p",
        "--platform",
        default=None,
        help="Target platform (default: first configured platform)",
    )
    build_parser.add_argument(
        "--mode",
        choices=sorted(BUILD_MODES),
        default="dev",
        help="dev builds against local checkouts, release against the registry (default: dev)",
    )
    build_parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Directory holding the component checkouts",
    )
    add_common_arguments(build_parser)

    # Collect command
    collect_parser = subparsers.add_parser(
        "collect",
        help="Archive built binaries with checksums",
    )
    collect_parser.add_argument(
        "-p",
        "--platform",
        default=None,
        help="Platform (default: first configured platform)",
    )
    collect_parser.add_argument(
        "--variant",
        default=BASE_VARIANT,
        help="Feature variant (default: base)",
    )
    collect_parser.add_argument(
        "--version",
        dest="release_version",
        default=None,
        help="Version in archive names (default: current version)",
    )
    collect_parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Directory holding the component checkouts",
    )
    collect_parser.add_argument(
        "--artifacts-dir",
        type=Path,
        default=None,
        help="Output directory for archives",
    )
    add_common_arguments(collect_parser)

    # Setup command
    setup_parser = subparsers.add_parser(
        "setup",
        help="Clone or update the component repositories",
    )
    setup_parser.add_argument(
        "--ref",
        default=None,
        help="Tag or branch to check out in every repository",
    )
    setup_parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Directory for the component checkouts (created if missing)",
    )
    add_common_arguments(setup_parser)

    # Release command
    release_parser = subparsers.add_parser(
        "release",
        help="Run the full release pipeline",
    )
    release_parser.add_argument(
        "components",
        nargs="*",
        help="Components to release (default: all), dependencies included",
    )
    release_parser.add_argument(
        "--version",
        dest="release_version",
        default=None,
        help="Release version (default: next patch version)",
    )
    release_parser.add_argument(
        "-p",
        "--platform",
        dest="platforms",
        action="append",
        default=[],
        help="Platform to build (repeatable, default: configured platforms)",
    )
    release_parser.add_argument(
        "--variant",
        dest="variants",
        action="append",
        default=[],
        help="Variant to build (repeatable, default: base and experimental)",
    )
    release_parser.add_argument(
        "--setup",
        action="store_true",
        help="Clone or update the component repositories before building",
    )
    release_parser.add_argument(
        "--ref",
        default=None,
        help="With --setup, tag or branch to check out in every repository",
    )
    release_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Build and verify without publishing, tagging or releasing",
    )
    release_parser.add_argument(
        "--skip-tagging",
        action="store_true",
        help="Do not create git tags",
    )
    release_parser.add_argument(
        "--skip-tests",
        action="store_true",
        help="Do not run component tests",
    )
    release_parser.add_argument(
        "--skip-publish",
        action="store_true",
        help="Do not publish libraries to the registry",
    )
    release_parser.add_argument(
        "--no-bump",
        action="store_true",
        help="Leave versions.toml unchanged after the release",
    )
    release_parser.add_argument(
        "-j",
        "--max-workers",
        type=int,
        default=1,
        help="Platforms to build concurrently (default: 1)",
    )
    release_parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Directory holding the component checkouts",
    )
    release_parser.add_argument(
        "--artifacts-dir",
        type=Path,
        default=None,
        help="Output directory for archives",
    )
    add_common_arguments(release_parser)

    return parser


def main() -> None:
    """relchain - Release orchestration for dependent Rust components.

    Builds, publishes, archives and tags a chain of components in
    dependency order.
    """
    parser = create_parser()

    # Parse arguments
    parsed_args = parser.parse_args()

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    if parsed_args.command == "version" and parsed_args.write and not parsed_args.next:
        parser.error("--write requires --next")
    if parsed_args.command == "release" and parsed_args.max_workers < 1:
        parser.error("--max-workers must be at least 1")

    # Validate paths
    PathValidator.validate_manifest_file(parsed_args.versions)
    creates_workspace = parsed_args.command == "setup" or getattr(parsed_args, "setup", False)
    if getattr(parsed_args, "workspace", None) is not None and not creates_workspace:
        PathValidator.validate_workspace_dir(parsed_args.workspace)

    setup_logging(verbose=parsed_args.verbose, log_file=parsed_args.log_file)
    common = common_kwargs(parsed_args)

    # Execute command
    if parsed_args.command == "validate":
        validate_command(ValidateArgs(workspace=parsed_args.workspace, **common))
    elif parsed_args.command == "order":
        order_command(OrderArgs(components=parsed_args.components, **common))
    elif parsed_args.command == "version":
        version_command(
            VersionArgs(next=parsed_args.next, set=parsed_args.set, write=parsed_args.write, **common)
        )
    elif parsed_args.command == "plan":
        plan_command(
            PlanArgs(platforms=parsed_args.platforms, version=parsed_args.release_version, **common)
        )
    elif parsed_args.command == "build":
        build_args = BuildArgs(
            variant=parsed_args.variant,
            platform=parsed_args.platform,
            mode=parsed_args.mode,
            components=parsed_args.components,
            workspace=parsed_args.workspace,
            **common,
        )
        build_command(build_args)
    elif parsed_args.command == "collect":
        collect_args = CollectArgs(
            platform=parsed_args.platform,
            variant=parsed_args.variant,
            version=parsed_args.release_version,
            workspace=parsed_args.workspace,
            artifacts_dir=parsed_args.artifacts_dir,
            **common,
        )
        collect_command(collect_args)
    elif parsed_args.command == "setup":
        setup_command(SetupArgs(ref=parsed_args.ref, workspace=parsed_args.workspace, **common))
    elif parsed_args.command == "release":
        release_args = ReleaseArgs(
            version=parsed_args.release_version,
            platforms=parsed_args.platforms,
            variants=parsed_args.variants,
            components=parsed_args.components,
            setup=parsed_args.setup,
            ref=parsed_args.ref,
            dry_run=parsed_args.dry_run,
            skip_tagging=parsed_args.skip_tagging,
            skip_tests=parsed_args.skip_tests,
            skip_publish=parsed_args.skip_publish,
            no_bump=parsed_args.no_bump,
            max_workers=parsed_args.max_workers,
            workspace=parsed_args.workspace,
            artifacts_dir=parsed_args.artifacts_dir,
            **common,
        )
        release_command(release_args)


if __name__ == "__main__":
    main()
