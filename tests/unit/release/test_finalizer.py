"""Unit tests for the release manifest, notes, finalization and signing."""

import json
from datetime import datetime, timezone
from string import Template
from unittest.mock import MagicMock, patch

import pytest

from relchain.artifacts import ArtifactCollector
from relchain.build.executor import CommandResult
from relchain.errors import MissingArtifact, ReleaseCreationError, TagFailure
from relchain.release import (
    FinalizeState,
    GitSourceControl,
    ReleaseFinalizer,
    ReleaseManifest,
    ReleaseSigner,
    render_release_notes,
    write_release_notes,
)

COMPONENTS = {"blvm-consensus": "0.2.0", "blvm-node": "0.2.0", "blvm": "0.2.0"}


@pytest.fixture
def collected(tmp_path):
    build_dir = tmp_path / "build"
    build_dir.mkdir()
    (build_dir / "blvm").write_bytes(b"blvm binary")
    collector = ArtifactCollector(tmp_path / "artifacts", show_progress=False)
    return [
        collector.collect("bllvm", "0.2.0", "linux-x86_64", variant, {"blvm": {"blvm": build_dir / "blvm"}})
        for variant in ("base", "experimental")
    ]


@pytest.fixture
def manifest(collected):
    return ReleaseManifest.build("0.2.0", COMPONENTS, collected, commit="abc123", commits={"blvm": "fff000"})


class TestReleaseManifest:
    """Test cases for ReleaseManifest."""

    def test_build(self, manifest):
        assert manifest.tag == "v0.2.0"
        assert [name for name, _ in manifest.components] == ["blvm-consensus", "blvm-node", "blvm"]
        assert len(manifest.artifacts) == 2
        assert [p.name for p in manifest.archives] == [
            "bllvm-0.2.0-linux-x86_64.tar.gz",
            "bllvm-0.2.0-linux-x86_64.zip",
            "SHA256SUMS-bllvm-linux-x86_64",
            "bllvm-experimental-0.2.0-linux-x86_64.tar.gz",
            "bllvm-experimental-0.2.0-linux-x86_64.zip",
            "SHA256SUMS-bllvm-experimental-linux-x86_64",
        ]
        assert set(dict(manifest.checksums)) == {"bllvm-linux-x86_64", "bllvm-experimental-linux-x86_64"}

    def test_is_immutable(self, manifest):
        """Test that notes produce a new manifest instead of editing this one."""
        with_notes = manifest.with_notes("notes")
        assert manifest.notes == ""
        assert with_notes.notes == "notes"
        with pytest.raises(AttributeError):
            manifest.notes = "edited"

    def test_write_json(self, manifest, tmp_path):
        path = manifest.write(tmp_path)

        data = json.loads(path.read_text())
        assert path.name == "release-manifest.json"
        assert data["tag"] == "v0.2.0"
        blvm = data["components"][2]
        assert blvm["commit"] == "fff000"
        assert {a["variant"] for a in blvm["artifacts"]} == {"base", "experimental"}
        assert data["components"][0]["artifacts"] == []


class TestReleaseNotes:
    """Test cases for release notes rendering."""

    def test_default_template(self, manifest):
        notes = render_release_notes(manifest, date=datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

        assert notes.startswith("# Release v0.2.0")
        assert "Release date: 2025-01-02 03:04:05 UTC" in notes
        assert "- **blvm-node** 0.2.0" in notes
        assert "- `experimental`: `blvm`" in notes
        assert "- `bllvm-0.2.0-linux-x86_64.tar.gz`" in notes
        assert "sha256sum -c SHA256SUMS-bllvm-linux-x86_64" in notes

    def test_custom_template(self, manifest):
        notes = render_release_notes(manifest, Template("$tag ($version) $unknown"))
        assert notes == "v0.2.0 (0.2.0) $unknown"

    def test_write(self, manifest, tmp_path):
        path = write_release_notes(manifest, tmp_path / "out")
        assert path.name == "RELEASE_NOTES.md"
        assert "v0.2.0" in path.read_text()


class FakeScm:
    """Records tags and releases; tag failures and existing tags are configurable."""

    def __init__(self, existing=(), failing=(), release_error=None):
        self.existing = set(existing)
        self.failing = set(failing)
        self.release_error = release_error
        self.tags = []
        self.releases = []

    def tag_exists(self, repo, tag):
        return repo in self.existing

    def create_tag(self, repo, tag, message):
        if repo in self.failing:
            raise TagFailure(repo, "git push failed: permission denied")
        self.tags.append((repo, tag, message))

    def create_release(self, repo, tag, notes, assets):
        if self.release_error:
            raise self.release_error
        self.releases.append((repo, tag, notes, assets))
        return f"https://github.example/{repo}/releases/tag/{tag}"


class TestReleaseFinalizer:
    """Test suite for ReleaseFinalizer."""

    REPOS = ["blvm-consensus", "blvm-node", "blvm"]

    @pytest.fixture
    def assets(self, collected):
        return [path for batch in collected for path in batch.release_assets()]

    def test_tags_then_publishes(self, manifest, assets):
        scm = FakeScm()
        finalizer = ReleaseFinalizer(scm, "blvm", show_progress=False)

        result = finalizer.finalize(manifest.with_notes("notes"), self.REPOS, assets)

        assert result.state == FinalizeState.COMPLETE
        assert result.complete
        assert result.tagged == self.REPOS
        assert scm.tags[0] == ("blvm-consensus", "v0.2.0", "Release v0.2.0")
        assert scm.releases == [("blvm", "v0.2.0", "notes", assets)]
        assert result.release_url.endswith("/blvm/releases/tag/v0.2.0")

    def test_existing_tags_are_skipped(self, manifest, assets):
        """Test that re-running finalization never duplicates tags."""
        scm = FakeScm(existing=["blvm-consensus"])
        result = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(manifest, self.REPOS, assets)
        assert result.skipped == ["blvm-consensus"]
        assert [t[0] for t in scm.tags] == ["blvm-node", "blvm"]

    def test_partial_tag_failure_still_releases(self, manifest, assets):
        """Test that one repository's tag failure does not abort the release."""
        scm = FakeScm(failing=["blvm-node"])

        result = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(manifest, self.REPOS, assets)

        assert result.complete
        assert result.failed_tags == {"blvm-node": "git push failed: permission denied"}
        assert result.tagged == ["blvm-consensus", "blvm"]
        assert len(scm.releases) == 1

    def test_release_failure(self, manifest, assets):
        scm = FakeScm(release_error=ReleaseCreationError("upload failed"))
        finalizer = ReleaseFinalizer(scm, "blvm", show_progress=False)

        with pytest.raises(ReleaseCreationError):
            finalizer.finalize(manifest, self.REPOS, assets)

        assert finalizer.state == FinalizeState.FAILED

    def test_missing_asset_fails_before_tagging(self, manifest, assets, tmp_path):
        scm = FakeScm()
        with pytest.raises(MissingArtifact):
            ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(
                manifest, self.REPOS, assets + [tmp_path / "missing.tar.gz"]
            )
        assert scm.tags == []

    def test_dry_run(self, manifest, assets):
        scm = FakeScm()
        result = ReleaseFinalizer(scm, "blvm", dry_run=True, show_progress=False).finalize(
            manifest, self.REPOS, assets
        )
        assert result.complete
        assert scm.tags == []
        assert scm.releases == []
        assert result.release_url is None

    def test_skip_tagging(self, manifest, assets):
        scm = FakeScm()
        result = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(
            manifest, self.REPOS, assets, skip_tagging=True
        )
        assert scm.tags == []
        assert result.tagged == []
        assert len(scm.releases) == 1

    def test_rerun_pushes_tag_after_failed_push(self, manifest, assets, tmp_path):
        """Test that a rerun recovers a tag that was created locally but never pushed."""
        workspace = tmp_path / "workspace"
        (workspace / "blvm").mkdir(parents=True)
        local, remote = set(), set()
        pushes = {"fail": 1}

        def git(cmd, cwd, log_path=None, timeout=None, env=None):
            tag = cmd[-1].rsplit("/", 1)[-1]
            if cmd[1] == "rev-parse":
                return CommandResult(0 if tag in local else 1, "")
            if cmd[1] == "ls-remote":
                return CommandResult(0, f"abc123\t{cmd[-1]}" if tag in remote else "")
            if cmd[1] == "tag":
                local.add(cmd[3])
            if cmd[1] == "push":
                if pushes["fail"]:
                    pushes["fail"] -= 1
                    return CommandResult(128, "fatal: unable to access remote")
                remote.add(cmd[3])
            return CommandResult(0, "")

        executor = MagicMock()
        executor.run.side_effect = git
        releases = MagicMock()
        releases.create_release.return_value = "https://github.example/blvm/releases/tag/v0.2.0"
        scm = GitSourceControl(workspace, executor, releases=releases)

        first = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(manifest, ["blvm"], assets)
        assert "unable to access remote" in first.failed_tags["blvm"]
        assert local == {"v0.2.0"} and remote == set()

        second = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(manifest, ["blvm"], assets)
        assert second.tagged == ["blvm"]
        assert second.skipped == []
        assert second.failed_tags == {}
        assert remote == {"v0.2.0"}

        third = ReleaseFinalizer(scm, "blvm", show_progress=False).finalize(manifest, ["blvm"], assets)
        assert third.skipped == ["blvm"]


class TestReleaseSigner:
    """Test cases for ReleaseSigner."""

    @pytest.fixture
    def files(self, tmp_path):
        binary = tmp_path / "bllvm-linux-x86_64" / "blvm"
        binary.parent.mkdir()
        binary.write_bytes(b"blvm")
        sums = binary.parent / "SHA256SUMS"
        sums.write_text("")
        return binary, sums

    def test_no_key(self, files, tmp_path):
        """Test that every file is recorded as skipped with the reason."""
        binary, sums = files
        report = ReleaseSigner(tmp_path / "sigs").sign([binary], [sums], "0.2.0")
        assert report.signatures == []
        assert [s.reason for s in report.skipped] == ["no signing key configured"] * 2

    def test_tool_not_installed(self, files, tmp_path):
        binary, sums = files
        with patch("relchain.release.signer.shutil.which", return_value=None):
            report = ReleaseSigner(tmp_path / "sigs", key="key.pem").sign([binary], [sums], "0.2.0")
        assert report.skipped[0].reason == "signing tool not installed: bllvm-sign-binary"

    def test_signs_binaries_and_checksums(self, files, tmp_path):
        binary, sums = files
        executor = MagicMock()
        executor.run.return_value = CommandResult(0, "")
        signer = ReleaseSigner(tmp_path / "sigs", key="key.pem", executor=executor)

        with patch("relchain.release.signer.shutil.which", return_value="/usr/bin/bllvm-sign-binary"):
            report = signer.sign([binary], [sums], "0.2.0", commit="abc123")

        assert [p.name for p in report.signatures] == [
            "bllvm-linux-x86_64-blvm.sig",
            "bllvm-linux-x86_64-SHA256SUMS.sig",
        ]
        binary_cmd = executor.run.call_args_list[0].args[0]
        assert binary_cmd[:2] == ["bllvm-sign-binary", "binary"]
        assert "--commit" in binary_cmd
        assert "--commit" not in executor.run.call_args_list[1].args[0]

    def test_signing_failure_is_recorded(self, files, tmp_path):
        binary, sums = files
        executor = MagicMock()
        executor.run.return_value = CommandResult(1, "bad key")
        signer = ReleaseSigner(tmp_path / "sigs", key="key.pem", executor=executor)

        with patch("relchain.release.signer.shutil.which", return_value="/usr/bin/bllvm-sign-binary"):
            report = signer.sign([binary], [], "0.2.0")

        assert report.signatures == []
        assert report.skipped[0].reason == "signing failed: exit code 1"
