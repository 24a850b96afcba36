"""Unit tests for the cargo component builder."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from relchain.build.builder import (
    LOCAL_MODE,
    REGISTRY_MODE,
    BuildReport,
    BuildResult,
    ComponentBuilder,
    check_toolchain,
)
from relchain.build.executor import CommandResult
from relchain.config.pipeline_config import KNOWN_PLATFORMS, ComponentSettings, ReleaseConfig
from relchain.config.versions import Component, ComponentKind, Requirement
from relchain.errors import BuildFailure, MissingArtifact, TestFailure, ToolNotFound

LINUX = KNOWN_PLATFORMS["linux-x86_64"]
WINDOWS = KNOWN_PLATFORMS["windows-x86_64"]


def make_component(name, binaries=(), requires=(), optional=False):
    return Component(
        name=name,
        version="0.2.0",
        git_tag="v0.2.0",
        kind=ComponentKind.BINARY if binaries else ComponentKind.LIBRARY,
        requires=tuple(Requirement(r) for r in requires),
        binaries=tuple(binaries),
        optional=optional,
    )


class TestComponentBuilder:
    """Test suite for ComponentBuilder with a mocked executor."""

    @pytest.fixture
    def config(self, tmp_path):
        workspace = tmp_path / "workspace"
        for repo in ("blvm-consensus", "blvm-node", "blvm", "blvm-commons"):
            (workspace / repo).mkdir(parents=True)
        return ReleaseConfig(workspace=workspace, artifacts_dir=tmp_path / "artifacts")

    @pytest.fixture
    def executor(self):
        executor = MagicMock()
        executor.run.return_value = CommandResult(returncode=0, output="Finished release", duration=1.5)
        return executor

    @pytest.fixture
    def builder(self, config, executor):
        return ComponentBuilder(config, executor, show_progress=False)

    def produce(self, builder, component, platform, variant):
        """Create the binaries cargo would have written."""
        output_dir = builder.output_dir(component, platform, variant)
        output_dir.mkdir(parents=True, exist_ok=True)
        for name in component.binaries:
            (output_dir / f"{name}{platform.binary_ext}").write_bytes(b"\x7fELF")

    def test_build_command_base(self, builder, config):
        """Test the cargo invocation for a base build."""
        node = make_component("blvm-node")
        cmd = builder.build_command(node, "base", LINUX, LOCAL_MODE)

        assert cmd[:3] == ["cargo", "build", "--release"]
        assert "--locked" not in cmd
        assert "--target" not in cmd
        assert cmd[cmd.index("--target-dir") + 1] == str(
            config.workspace / "blvm-node" / "target" / "linux-x86_64-base"
        )
        features = cmd[cmd.index("--features") + 1].split(",")
        assert "production" in features
        assert "utxo-commitments" not in features

    def test_build_command_cross_registry(self, builder, config):
        """Test target triple, --locked and --jobs."""
        config.build_jobs = 4
        node = make_component("blvm-node")
        cmd = builder.build_command(node, "experimental", WINDOWS, REGISTRY_MODE)

        assert "--locked" in cmd
        assert cmd[cmd.index("--target") + 1] == "x86_64-pc-windows-gnu"
        assert "utxo-commitments" in cmd[cmd.index("--features") + 1]
        assert cmd[-2:] == ["--jobs", "4"]

    def test_build_command_default_features(self, builder):
        """Test that components without a feature set use crate defaults."""
        cmd = builder.build_command(make_component("blvm-commons"), "base", LINUX, LOCAL_MODE)
        assert "--features" not in cmd

    def test_output_dir(self, builder, config):
        node = make_component("blvm-node")
        assert builder.output_dir(node, LINUX, "base") == (
            config.workspace / "blvm-node" / "target" / "linux-x86_64-base" / "release"
        )
        assert builder.output_dir(node, WINDOWS, "base") == (
            config.workspace
            / "blvm-node"
            / "target"
            / "windows-x86_64-base"
            / "x86_64-pc-windows-gnu"
            / "release"
        )

    def test_build_success(self, builder, executor, config):
        """Test a successful build locates its binaries."""
        blvm = make_component("blvm", binaries=["blvm"])
        self.produce(builder, blvm, LINUX, "base")

        result = builder.build(blvm, "base", LINUX)

        assert isinstance(result, BuildResult)
        assert result.component == "blvm"
        assert result.variant == "base"
        assert result.binaries["blvm"].name == "blvm"
        assert result.log_path == config.log_dir / "blvm-linux-x86_64-base-build.log"
        call_kwargs = executor.run.call_args.kwargs
        assert call_kwargs["cwd"] == config.workspace / "blvm"
        assert call_kwargs["timeout"] == config.build_timeout

    def test_windows_binary_extension(self, builder):
        blvm = make_component("blvm", binaries=["blvm"])
        self.produce(builder, blvm, WINDOWS, "experimental")

        result = builder.build(blvm, "experimental", WINDOWS)

        assert result.binaries["blvm"].name == "blvm.exe"

    def test_registry_mode_refreshes_lock_file_once(self, builder, executor):
        """Test that cargo update runs once per component."""
        node = make_component("blvm-node")

        builder.build(node, "base", LINUX, REGISTRY_MODE)
        builder.build(node, "experimental", LINUX, REGISTRY_MODE)

        commands = [call.args[0] for call in executor.run.call_args_list]
        assert commands.count(["cargo", "update", "--workspace"]) == 1
        assert len(commands) == 3

    def test_invalid_mode(self, builder):
        with pytest.raises(ValueError, match="dependency_mode"):
            builder.build(make_component("blvm-node"), "base", LINUX, "remote")

    def test_missing_directory(self, builder):
        with pytest.raises(BuildFailure, match="component directory not found"):
            builder.build(make_component("blvm-sdk"), "base", LINUX)

    def test_compile_error_includes_log_tail(self, builder, executor):
        """Test that a failing build carries the compiler output."""
        executor.run.return_value = CommandResult(
            returncode=101, output="Compiling blvm-node\nerror[E0425]: cannot find value `x`\n"
        )

        with pytest.raises(BuildFailure) as exc_info:
            builder.build(make_component("blvm-node"), "base", LINUX)

        assert exc_info.value.component == "blvm-node"
        assert exc_info.value.platform == "linux-x86_64"
        assert "error[E0425]" in str(exc_info.value)
        assert "exit code 101" in str(exc_info.value)

    def test_timeout_is_build_failure(self, builder, executor, config):
        executor.run.return_value = CommandResult(returncode=-9, output="", timed_out=True)
        with pytest.raises(BuildFailure, match=f"timed out after {config.build_timeout}s"):
            builder.build(make_component("blvm-node"), "base", LINUX)

    def test_missing_binary(self, builder):
        """Test that a declared binary that was not produced is reported."""
        with pytest.raises(MissingArtifact) as exc_info:
            builder.build(make_component("blvm", binaries=["blvm"]), "base", LINUX)
        assert exc_info.value.component == "blvm"

    def test_build_all_skips_failing_optional_component(self, builder, executor):
        """Test that optional failures are recorded and the build continues."""
        commons = make_component("blvm-commons", binaries=["blvm-commons"], optional=True)
        blvm = make_component("blvm", binaries=["blvm"])
        self.produce(builder, blvm, LINUX, "base")

        report = builder.build_all([commons, blvm], "base", LINUX)

        assert "blvm-commons" in report.skipped
        assert [r.component for r in report.results] == ["blvm"]

    def test_build_all_stops_on_required_failure(self, builder, executor):
        executor.run.return_value = CommandResult(returncode=1, output="boom")
        with pytest.raises(BuildFailure):
            builder.build_all([make_component("blvm-consensus"), make_component("blvm-node")], "base", LINUX)
        assert executor.run.call_count == 1

    def test_build_all_respects_platform_restriction(self, builder, config, executor):
        config.components["blvm-commons"] = ComponentSettings(platforms=["linux-x86_64"])
        report = builder.build_all([make_component("blvm-commons")], "base", WINDOWS)
        assert report.results == []
        executor.run.assert_not_called()

    def test_optional_override_from_config(self, builder, config):
        config.components["blvm-node"] = ComponentSettings(optional=True)
        assert builder.is_optional(make_component("blvm-node"))
        assert not builder.is_optional(make_component("blvm-consensus"))

    def test_test_success(self, builder, executor, config):
        log_path = builder.test(make_component("blvm-consensus"), LINUX)
        cmd = executor.run.call_args.args[0]
        assert cmd[:3] == ["cargo", "test", "--release"]
        assert executor.run.call_args.kwargs["timeout"] == config.test_timeout
        assert log_path.name == "blvm-consensus-linux-x86_64-base-test.log"

    def test_test_failure(self, builder, executor):
        executor.run.return_value = CommandResult(returncode=101, output="test result: FAILED")
        with pytest.raises(TestFailure, match="test result: FAILED"):
            builder.test(make_component("blvm-consensus"), LINUX)


class TestBuildReport:
    """Test cases for BuildReport."""

    def test_merge_and_lookup(self):
        first = BuildReport([BuildResult("blvm", "linux-x86_64", "base", {"blvm": Path("a/blvm")})])
        second = BuildReport([], {"blvm-commons": "failed"})
        first.merge(second)
        assert first.binaries() == {"blvm": Path("a/blvm")}
        assert first.by_component() == {"blvm": {"blvm": Path("a/blvm")}}
        assert first.skipped == {"blvm-commons": "failed"}


class TestCheckToolchain:
    """Test cases for check_toolchain."""

    def test_missing_cargo(self):
        with patch("relchain.build.builder.shutil.which", return_value=None):
            with pytest.raises(ToolNotFound, match="cargo"):
                check_toolchain(MagicMock())

    def test_recent_rustc(self):
        executor = MagicMock()
        executor.run.return_value = CommandResult(0, "rustc 1.75.0 (82e1608df 2023-12-21)\n")
        with patch("relchain.build.builder.shutil.which", return_value="/usr/bin/tool"):
            assert check_toolchain(executor) == "1.75.0"

    def test_old_rustc(self):
        executor = MagicMock()
        executor.run.return_value = CommandResult(0, "rustc 1.65.0 (897e37553 2022-11-02)\n")
        with patch("relchain.build.builder.shutil.which", return_value="/usr/bin/tool"):
            with pytest.raises(ToolNotFound, match="rustup update"):
                check_toolchain(executor)
