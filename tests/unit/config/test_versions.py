"""
Unit tests for versions.toml parsing and version resolution.
"""

import pytest

from relchain.config.versions import (
    ComponentKind,
    Requirement,
    VersionResolver,
    VersionsManifest,
    normalize_version,
    parse_version,
    write_version_bump,
)
from relchain.errors import MalformedVersion, ManifestError

CHAIN = """
[versions]
blvm-consensus = { version = "0.1.0", git_tag = "v0.1.0" }
blvm-protocol = { version = "0.1.0", git_tag = "v0.1.0", requires = ["blvm-consensus=0.1.0"] }
blvm-node = { version = "0.1.0", git_tag = "v0.1.0", requires = ["blvm-protocol=0.1.0"] }
blvm = { version = "0.1.0", git_tag = "v0.1.0", requires = ["blvm-node"], binaries = ["blvm"] }

[metadata]
anchor = "blvm-consensus"
"""


class TestVersionsManifest:
    """Test suite for VersionsManifest parsing."""

    @pytest.fixture
    def manifest(self):
        return VersionsManifest.from_string(CHAIN)

    def test_declaration_order_is_kept(self, manifest):
        """Test that components keep the [versions] table order."""
        assert manifest.names() == ["blvm-consensus", "blvm-protocol", "blvm-node", "blvm"]

    def test_component_fields(self, manifest):
        """Test parsed component attributes."""
        protocol = manifest.get("blvm-protocol")
        assert protocol.version == "0.1.0"
        assert protocol.git_tag == "v0.1.0"
        assert protocol.requires == (Requirement("blvm-consensus", "0.1.0"),)
        assert protocol.dependencies == ["blvm-consensus"]
        assert protocol.kind == ComponentKind.LIBRARY
        assert protocol.publishable

    def test_kind_defaults_to_binary_when_binaries_declared(self, manifest):
        """Test that a component with binaries is a binary component."""
        blvm = manifest.get("blvm")
        assert blvm.kind == ComponentKind.BINARY
        assert blvm.produces_binaries
        assert not blvm.publishable

    def test_git_tag_defaults_to_version(self):
        """Test that git_tag falls back to v<version>."""
        manifest = VersionsManifest.from_string('[versions]\na = { version = "1.2.3" }\n')
        assert manifest.get("a").git_tag == "v1.2.3"

    def test_optional_fields(self):
        """Test optional, publish and repo keys."""
        content = """
[versions]
sdk = { version = "0.1.0", optional = true, publish = false, repo = "blvm-sdk", kind = "library" }
"""
        sdk = VersionsManifest.from_string(content).get("sdk")
        assert sdk.optional is True
        assert sdk.publish is False
        assert sdk.repo_name == "blvm-sdk"
        assert not sdk.publishable

    def test_invalid_toml_raises(self):
        """Test that a TOML syntax error is a ManifestError."""
        with pytest.raises(ManifestError, match="Failed to parse"):
            VersionsManifest.from_string("[versions\n")

    def test_missing_versions_table_raises(self):
        """Test that a manifest without [versions] is rejected."""
        with pytest.raises(ManifestError, match=r"\[versions\]"):
            VersionsManifest.from_string("[metadata]\nanchor = 'a'\n")

    def test_non_table_entry_raises(self):
        """Test that a plain string entry is rejected."""
        with pytest.raises(ManifestError, match="must be a table"):
            VersionsManifest.from_string('[versions]\na = "0.1.0"\n')

    def test_unknown_kind_raises(self):
        """Test that an unknown kind is rejected."""
        with pytest.raises(ManifestError, match="Unknown component kind"):
            VersionsManifest.from_string('[versions]\na = { version = "0.1.0", kind = "plugin" }\n')

    def test_unknown_component_raises(self, manifest):
        """Test that get() on an undeclared name raises."""
        with pytest.raises(ManifestError, match="Unknown component 'nope'"):
            manifest.get("nope")

    def test_from_file_missing(self, tmp_path):
        """Test that a missing file is a ManifestError."""
        with pytest.raises(ManifestError, match="Failed to read"):
            VersionsManifest.from_file(tmp_path / "versions.toml")

    def test_from_file_records_path(self, tmp_path):
        """Test that from_file remembers where the manifest came from."""
        path = tmp_path / "versions.toml"
        path.write_text(CHAIN)
        assert VersionsManifest.from_file(path).path == path


class TestManifestValidation:
    """Test suite for VersionsManifest.validate()."""

    def test_valid_chain(self):
        """Test that a consistent chain has no errors or warnings."""
        result = VersionsManifest.from_string(CHAIN).validate()
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_invalid_version_format(self):
        """Test that non X.Y.Z versions are errors."""
        content = '[versions]\na = { version = "1.0" }\nb = { version = "1.0.0-rc1" }\n'
        result = VersionsManifest.from_string(content).validate()
        assert not result.is_valid
        assert len(result.errors) == 2
        assert "invalid version '1.0'" in result.errors[0]

    def test_dangling_requirement(self):
        """Test that a requirement on an undeclared component is an error."""
        content = '[versions]\na = { version = "0.1.0", requires = ["ghost"] }\n'
        result = VersionsManifest.from_string(content).validate()
        assert result.errors == ["Repository 'a' requires 'ghost' which is not defined"]

    def test_cycle(self):
        """Test that a dependency cycle is an error naming the path."""
        content = """
[versions]
a = { version = "0.1.0", requires = ["b"] }
b = { version = "0.1.0", requires = ["a"] }
"""
        result = VersionsManifest.from_string(content).validate()
        assert not result.is_valid
        assert any("a -> b -> a" in error for error in result.errors)

    def test_pin_mismatch_is_warning(self):
        """Test that a stale requires pin is only a warning."""
        content = """
[versions]
a = { version = "0.2.0" }
b = { version = "0.2.0", requires = ["a=0.1.0"] }
"""
        result = VersionsManifest.from_string(content).validate()
        assert result.is_valid
        assert len(result.warnings) == 1
        assert "pins a=0.1.0" in result.warnings[0]


class TestVersionHelpers:
    """Tests for module-level version helpers."""

    def test_parse_version(self):
        assert parse_version("0.1.9") == (0, 1, 9)
        assert parse_version("1.2.3-beta") == (1, 2, 3)

    def test_parse_version_malformed(self):
        with pytest.raises(MalformedVersion):
            parse_version("one.two")

    def test_normalize_version(self):
        assert normalize_version("v0.2.0") == "0.2.0"
        assert normalize_version("0.2.0") == "0.2.0"
        assert normalize_version("vnext") == "vnext"


class TestVersionResolver:
    """Test suite for VersionResolver."""

    def test_anchor_from_metadata(self):
        """Test that [metadata].anchor selects the anchor."""
        resolver = VersionResolver(VersionsManifest.from_string(CHAIN))
        assert resolver.anchor == "blvm-consensus"

    def test_anchor_defaults_to_first_root(self):
        """Test fallback to the first component without dependencies."""
        content = """
[versions]
b = { version = "0.3.0", requires = ["a"] }
a = { version = "0.3.0" }
"""
        assert VersionResolver(VersionsManifest.from_string(content)).anchor == "a"

    def test_unknown_anchor_raises(self):
        content = '[versions]\na = { version = "0.1.0" }\n[metadata]\nanchor = "zz"\n'
        with pytest.raises(ManifestError, match="Anchor component 'zz'"):
            VersionResolver(VersionsManifest.from_string(content))

    def test_next_version_increments_patch(self):
        """Test 0.1.0 -> 0.1.1."""
        resolver = VersionResolver(VersionsManifest.from_string(CHAIN))
        assert resolver.current_version() == "0.1.0"
        assert resolver.next_version() == "0.1.1"

    def test_next_version_ignores_suffix(self):
        content = '[versions]\na = { version = "1.4.9-rc.1" }\n'
        assert VersionResolver(VersionsManifest.from_string(content)).next_version() == "1.4.10"

    def test_next_version_malformed(self):
        content = '[versions]\na = { version = "latest" }\n'
        with pytest.raises(MalformedVersion):
            VersionResolver(VersionsManifest.from_string(content)).next_version()

    def test_resolve_override(self):
        """Test that an explicit version wins and a leading v is stripped."""
        resolver = VersionResolver(VersionsManifest.from_string(CHAIN))
        assert resolver.resolve("0.2.0") == "0.2.0"
        assert resolver.resolve("v0.2.0") == "0.2.0"
        assert resolver.resolve(None) == "0.1.1"

    def test_resolve_malformed_override(self):
        resolver = VersionResolver(VersionsManifest.from_string(CHAIN))
        with pytest.raises(MalformedVersion):
            resolver.resolve("next")

    def test_resolve_is_pure(self):
        """Test that resolving does not change the manifest."""
        manifest = VersionsManifest.from_string(CHAIN)
        VersionResolver(manifest).resolve()
        assert manifest.get("blvm-consensus").version == "0.1.0"

    def test_tag_for(self):
        assert VersionResolver.tag_for("0.2.0") == "v0.2.0"
        assert VersionResolver.tag_for("v0.2.0") == "v0.2.0"


class TestVersionBump:
    """Tests for write_version_bump."""

    def test_bump_rewrites_versions_tags_and_pins(self, tmp_path):
        """Test that every version, tag and pin moves to the new version."""
        path = tmp_path / "versions.toml"
        path.write_text(CHAIN)

        write_version_bump(path, "0.2.0")

        bumped = VersionsManifest.from_file(path)
        assert bumped.names() == ["blvm-consensus", "blvm-protocol", "blvm-node", "blvm"]
        for component in bumped.components.values():
            assert component.version == "0.2.0"
            assert component.git_tag == "v0.2.0"
        assert bumped.get("blvm-protocol").requires == (Requirement("blvm-consensus", "0.2.0"),)
        # Unpinned requirements stay unpinned
        assert bumped.get("blvm").requires == (Requirement("blvm-node", None),)
        assert bumped.get("blvm").binaries == ("blvm",)
        assert bumped.metadata == {"anchor": "blvm-consensus"}
        assert bumped.validate().is_valid

    def test_bump_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "versions.toml"
        path.write_text(CHAIN)
        write_version_bump(path, "v0.1.1")
        assert [p.name for p in tmp_path.iterdir()] == ["versions.toml"]

    def test_bump_rejects_malformed_version(self, tmp_path):
        path = tmp_path / "versions.toml"
        path.write_text(CHAIN)
        with pytest.raises(MalformedVersion):
            write_version_bump(path, "abc")
        assert path.read_text() == CHAIN
