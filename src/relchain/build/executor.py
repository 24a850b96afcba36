"""Command Executor.

This module runs external tools (cargo, git, signing tools) for the pipeline.

Design:
    - Every command receives its working directory explicitly (no `cd`)
    - Combined stdout/stderr is streamed to a per-step log file and captured
    - Timeouts and KeyboardInterrupt kill the whole process tree via psutil
    - A missing executable raises ToolNotFound instead of a bare OSError
"""

import logging
import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import psutil

from ..errors import ToolNotFound

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    returncode: int
    output: str
    timed_out: bool = False
    duration: float = 0.0
    log_path: Optional[Path] = None

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def kill_process_tree(pid: int, timeout: float = 3.0) -> int:
    """Terminate a process and all of its descendants.

    Children are terminated before their parents; anything still alive after
    `timeout` seconds is force killed.

    Args:
        pid: Root process id
        timeout: Seconds to wait for graceful termination

    Returns:
        Number of processes signalled
    """
    try:
        root = psutil.Process(pid)
        processes = root.children(recursive=True) + [root]
    except psutil.NoSuchProcess:
        return 0

    signalled = []
    for proc in reversed(processes):
        try:
            proc.terminate()
            signalled.append(proc)
        except psutil.NoSuchProcess:
            pass  # Already dead
        except psutil.AccessDenied as e:
            logger.warning(f"Failed to terminate process {proc.pid}: {e}")

    _gone, alive = psutil.wait_procs(signalled, timeout=timeout)
    for proc in alive:
        try:
            proc.kill()
            logger.warning(f"Force killed stubborn process {proc.pid}")
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.warning(f"Failed to force kill process {proc.pid}: {e}")

    return len(signalled)


class CommandExecutor:
    """Runs external commands with logging, timeouts and process-tree cleanup.

    Usage:
        executor = CommandExecutor()
        result = executor.run(["cargo", "build", "--release"], cwd=repo_dir,
                              log_path=logs / "node-linux-x86_64-base-build.log",
                              timeout=2700)
        if not result.success:
            print(result.output)
    """

    def __init__(self, show_progress: bool = False, env: Optional[Mapping[str, str]] = None):
        """Initialize command executor.

        Args:
            show_progress: Echo command output to stdout as it arrives
            env: Base environment for every command (defaults to os.environ)
        """
        self.show_progress = show_progress
        self.base_env = dict(os.environ if env is None else env)

    def run(
        self,
        cmd: Sequence[str],
        cwd: Path,
        log_path: Optional[Path] = None,
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run a command and wait for it.

        Args:
            cmd: Command and arguments
            cwd: Working directory for the command
            log_path: Optional file that receives the combined output
            timeout: Seconds before the process tree is killed
            env: Extra environment variables layered over the base environment

        Returns:
            CommandResult; a non-zero exit code is not an exception

        Raises:
            ToolNotFound: If the executable does not exist
            KeyboardInterrupt: Re-raised after the process tree is killed
        """
        cmd = [str(part) for part in cmd]
        full_env = dict(self.base_env)
        if env:
            full_env.update(env)

        logger.debug(f"Running {' '.join(cmd)} in {cwd}")

        log_file = None
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = open(log_path, "w", encoding="utf-8")
            log_file.write(f"$ {' '.join(cmd)}\n")
            log_file.flush()

        start_time = time.time()
        try:
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=str(cwd),
                    env=full_env,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    text=True,
                    errors="replace",
                )
            except FileNotFoundError:
                raise ToolNotFound(cmd[0])

            lines: List[str] = []
            reader = threading.Thread(
                target=self._pump_output, args=(process, lines, log_file), daemon=True
            )
            reader.start()

            timed_out = False
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
                kill_process_tree(process.pid)
                process.wait()
            except KeyboardInterrupt:
                kill_process_tree(process.pid)
                process.wait()
                raise

            reader.join(timeout=5)
            output = "".join(lines)
            if timed_out:
                output += f"\n[relchain] command timed out after {timeout}s\n"
                if log_file is not None:
                    log_file.write(f"\n[relchain] command timed out after {timeout}s\n")

            return CommandResult(
                returncode=process.returncode,
                output=output,
                timed_out=timed_out,
                duration=time.time() - start_time,
                log_path=log_path,
            )
        finally:
            if log_file is not None:
                log_file.close()

    def _pump_output(self, process: subprocess.Popen, lines: List[str], log_file) -> None:
        assert process.stdout is not None
        for line in process.stdout:
            lines.append(line)
            if log_file is not None:
                log_file.write(line)
            if self.show_progress:
                print(line, end="")
