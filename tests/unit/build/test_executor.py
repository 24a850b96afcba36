"""Unit tests for the command executor."""

import sys
from unittest.mock import MagicMock, patch

import psutil
import pytest

from relchain.build.executor import CommandExecutor, CommandResult, kill_process_tree
from relchain.errors import ToolNotFound


class TestCommandResult:
    """Test cases for CommandResult."""

    def test_success(self):
        assert CommandResult(returncode=0, output="").success

    def test_failure(self):
        assert not CommandResult(returncode=101, output="error[E0425]").success

    def test_timeout_is_failure(self):
        assert not CommandResult(returncode=0, output="", timed_out=True).success


class TestCommandExecutor:
    """Test cases for CommandExecutor using the running interpreter as the tool."""

    def test_captures_combined_output(self, tmp_path):
        """Test that stdout and stderr are both captured."""
        executor = CommandExecutor()
        script = "import sys; print('out'); print('err', file=sys.stderr)"

        result = executor.run([sys.executable, "-c", script], cwd=tmp_path)

        assert result.success
        assert "out" in result.output
        assert "err" in result.output
        assert result.duration >= 0

    def test_writes_log_file(self, tmp_path):
        """Test that the log starts with the command line and holds the output."""
        log_path = tmp_path / "logs" / "blvm-node-linux-x86_64-base-build.log"
        executor = CommandExecutor()

        result = executor.run([sys.executable, "-c", "print('compiling')"], cwd=tmp_path, log_path=log_path)

        assert result.log_path == log_path
        content = log_path.read_text()
        assert content.startswith("$ ")
        assert "compiling" in content

    def test_nonzero_exit_is_not_an_exception(self, tmp_path):
        executor = CommandExecutor()
        result = executor.run([sys.executable, "-c", "import sys; sys.exit(3)"], cwd=tmp_path)
        assert result.returncode == 3
        assert not result.success
        assert not result.timed_out

    def test_runs_in_given_directory(self, tmp_path):
        """Test that the working directory is passed explicitly."""
        workdir = tmp_path / "blvm-node"
        workdir.mkdir()
        executor = CommandExecutor()

        result = executor.run([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=workdir)

        assert result.output.strip().endswith("blvm-node")

    def test_extra_environment(self, tmp_path):
        """Test that per-call variables are layered over the base environment."""
        executor = CommandExecutor(env={"BASE_VAR": "base"})
        script = "import os; print(os.environ['BASE_VAR'], os.environ['CARGO_REGISTRY_TOKEN'])"

        result = executor.run(
            [sys.executable, "-c", script], cwd=tmp_path, env={"CARGO_REGISTRY_TOKEN": "secret"}
        )

        assert result.output.strip() == "base secret"

    def test_timeout_kills_process(self, tmp_path):
        """Test that a timeout marks the result and stops the process."""
        log_path = tmp_path / "slow.log"
        executor = CommandExecutor()

        result = executor.run(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            cwd=tmp_path,
            log_path=log_path,
            timeout=0.5,
        )

        assert result.timed_out
        assert not result.success
        assert result.duration < 30
        assert "timed out" in log_path.read_text()

    def test_missing_tool(self, tmp_path):
        """Test that a missing executable raises ToolNotFound."""
        executor = CommandExecutor()
        with pytest.raises(ToolNotFound) as exc_info:
            executor.run(["relchain-no-such-tool"], cwd=tmp_path)
        assert exc_info.value.tool == "relchain-no-such-tool"


class TestKillProcessTree:
    """Test cases for kill_process_tree."""

    def test_missing_process(self):
        with patch("relchain.build.executor.psutil.Process", side_effect=psutil.NoSuchProcess(12345)):
            assert kill_process_tree(12345) == 0

    def test_children_terminated_before_parent(self):
        """Test termination order and force kill of survivors."""
        order = []
        child = MagicMock(pid=2)
        child.terminate.side_effect = lambda: order.append("child")
        root = MagicMock(pid=1)
        root.terminate.side_effect = lambda: order.append("root")
        root.children.return_value = [child]

        with (
            patch("relchain.build.executor.psutil.Process", return_value=root),
            patch("relchain.build.executor.psutil.wait_procs", return_value=([root], [child])),
        ):
            assert kill_process_tree(1, timeout=0.1) == 2

        assert order == ["child", "root"]
        child.kill.assert_called_once()
        root.kill.assert_not_called()
