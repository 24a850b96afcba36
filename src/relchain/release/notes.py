"""Release notes rendering."""

from datetime import datetime, timezone
from pathlib import Path
from string import Template
from typing import Optional

from .manifest import ReleaseManifest

DEFAULT_TEMPLATE = Template("""\
# Release ${tag}

Release date: ${date}

## Components

This release includes the following components:

${components}

## Build Variants

${variants}

## Archives

${archives}

## Verification

Verify the archives against the published checksums:

```bash
${verify}
```

Component versions and binary hashes are listed in `release-manifest.json`.
""")


def render_release_notes(
    manifest: ReleaseManifest,
    template: Optional[Template] = None,
    date: Optional[datetime] = None,
) -> str:
    """Render release notes from a template and the release manifest.

    Args:
        manifest: Release manifest
        template: Optional string.Template; receives tag, version, date,
            components, variants, archives and verify
        date: Release date (defaults to now, UTC)

    Returns:
        Rendered markdown text
    """
    template = template or DEFAULT_TEMPLATE
    date = date or datetime.now(timezone.utc)

    components = "\n".join(f"- **{name}** {version}" for name, version in manifest.components)

    variants = sorted({a.variant for a in manifest.artifacts})
    variant_lines = []
    for variant in variants:
        binaries = sorted({a.name for a in manifest.artifacts if a.variant == variant})
        variant_lines.append(f"- `{variant}`: {', '.join(f'`{b}`' for b in binaries)}")

    archive_names = [path.name for path in manifest.archives]
    checksum_files = [name for name in archive_names if name.startswith("SHA256SUMS")]
    archives = "\n".join(
        f"- `{name}`" for name in archive_names if not name.startswith("SHA256SUMS")
    )
    verify = "\n".join(f"sha256sum -c {name}" for name in checksum_files) or "sha256sum -c SHA256SUMS"

    return template.safe_substitute(
        tag=manifest.tag,
        version=manifest.version,
        date=date.strftime("%Y-%m-%d %H:%M:%S UTC"),
        components=components or "- (none)",
        variants="\n".join(variant_lines) or "- (none)",
        archives=archives or "- (none)",
        verify=verify,
    )


def write_release_notes(manifest: ReleaseManifest, output_dir: Path, template: Optional[Template] = None) -> Path:
    """Render release notes to `<output_dir>/RELEASE_NOTES.md`."""
    notes_file = Path(output_dir) / "RELEASE_NOTES.md"
    notes_file.parent.mkdir(parents=True, exist_ok=True)
    notes_file.write_text(render_release_notes(manifest, template), encoding="utf-8")
    return notes_file
