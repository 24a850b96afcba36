"""Release signing with an external signing tool.

Binaries and checksum files are signed when a key is configured and the
signing tool is installed. Anything not signed is recorded as an explicit
SigningSkip so the run report shows what was and was not performed.
"""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from ..build.executor import CommandExecutor

logger = logging.getLogger(__name__)

DEFAULT_SIGNING_TOOL = "bllvm-sign-binary"


@dataclass(frozen=True)
class SigningSkip:
    """A file that was not signed, and why."""

    target: str
    reason: str


@dataclass
class SigningReport:
    signatures: List[Path] = field(default_factory=list)
    skipped: List[SigningSkip] = field(default_factory=list)


class ReleaseSigner:
    """Signs release binaries and checksum files."""

    def __init__(
        self,
        signatures_dir: Path,
        key: Optional[str] = None,
        tool: str = DEFAULT_SIGNING_TOOL,
        executor: Optional[CommandExecutor] = None,
        timeout: float = 300,
    ):
        self.signatures_dir = Path(signatures_dir)
        self.key = key
        self.tool = tool
        self.executor = executor or CommandExecutor()
        self.timeout = timeout

    def unavailable_reason(self) -> Optional[str]:
        """Why signing cannot run at all, or None when it can."""
        if not self.key:
            return "no signing key configured"
        if shutil.which(self.tool) is None:
            return f"signing tool not installed: {self.tool}"
        return None

    def sign(
        self,
        binaries: Sequence[Path],
        checksum_files: Sequence[Path],
        version: str,
        commit: str = "",
    ) -> SigningReport:
        """Sign every binary and checksum file.

        Failures to sign a single file are logged and recorded, never raised.
        """
        report = SigningReport()
        targets = [("binary", Path(p)) for p in binaries] + [("checksums", Path(p)) for p in checksum_files]

        reason = self.unavailable_reason()
        if reason:
            logger.warning(f"Skipping release signing: {reason}")
            report.skipped.extend(SigningSkip(str(path), reason) for _kind, path in targets)
            return report

        self.signatures_dir.mkdir(parents=True, exist_ok=True)
        for kind, path in targets:
            # Distinct staging dirs may hold files with the same name
            sig_file = self.signatures_dir / f"{path.parent.name}-{path.name}.sig"
            cmd = [self.tool, kind, "--file", str(path), "--version", version, "--key", str(self.key)]
            if kind == "binary" and commit:
                cmd.extend(["--commit", commit])
            cmd.extend(["--output", str(sig_file)])

            result = self.executor.run(cmd, cwd=path.parent, timeout=self.timeout)
            if result.success:
                report.signatures.append(sig_file)
            else:
                logger.warning(f"Failed to sign {path.name}: {result.output.strip()}")
                report.skipped.append(SigningSkip(str(path), f"signing failed: exit code {result.returncode}"))

        return report
