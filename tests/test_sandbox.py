import asyncio
import os

import pytest

from mcp_sandbox_install.types import Sandbox
from mcp_sandbox_install.sandboxes.sandbox import (
    COMMAND_NOT_FOUND,
    STREAM_LIMIT,
    add_package_manager_bin_path,
    cleanup_sandbox,
    create_sandbox,
    run_sandboxed_command,
    start_detached_process,
)


@pytest.mark.asyncio
async def test_sandbox_isolation(sandbox: Sandbox):
    """Test sandbox provides proper isolation"""
    assert sandbox.work_dir.exists()
    assert sandbox.bin_dir.exists()
    assert sandbox.tmp_dir.exists()

    assert sandbox.env_vars["TMPDIR"] == str(sandbox.tmp_dir)
    assert sandbox.env_vars["HOME"] == str(sandbox.work_dir)
    assert sandbox.env_vars["PATH"].startswith(str(sandbox.bin_dir))


@pytest.mark.asyncio
async def test_cleanup_sandbox():
    """Test sandbox directories are removed"""
    sandbox = await create_sandbox("test-cleanup-")
    root = sandbox.root
    cleanup_sandbox(sandbox)
    assert not root.exists()


@pytest.mark.asyncio
async def test_command_streams_lines(sandbox: Sandbox, write_bin):
    """Test stdout and stderr lines are forwarded as they arrive"""
    write_bin(sandbox, "talk", """
        echo "first"
        echo ""
        echo "oops" >&2
        echo "second"
    """)
    seen = []

    async def on_line(line: str) -> None:
        seen.append(line)

    result = await run_sandboxed_command(sandbox, ["talk"], timeout=5, on_line=on_line)

    assert result.returncode == 0
    assert result.succeeded
    assert result.stdout_lines == ["first", "second"]
    assert result.stderr_lines == ["oops"]
    assert sorted(seen) == sorted(["first", "second", "STDERR: oops"])
    assert result.output == "first\nsecond\noops"


@pytest.mark.asyncio
async def test_command_runs_in_work_dir(sandbox: Sandbox):
    """Test commands run from the sandbox work dir"""
    result = await run_sandboxed_command(sandbox, ["pwd"], timeout=5)
    assert result.stdout_lines == [str(sandbox.work_dir)]


@pytest.mark.asyncio
async def test_command_exit_code(sandbox: Sandbox, write_bin):
    """Test non-zero exit codes are reported"""
    write_bin(sandbox, "fail", "exit 3\n")
    result = await run_sandboxed_command(sandbox, ["fail"], timeout=5)
    assert result.returncode == 3
    assert not result.succeeded


@pytest.mark.asyncio
async def test_missing_command(sandbox: Sandbox):
    """Test a missing binary is reported instead of raised"""
    seen = []

    async def on_line(line: str) -> None:
        seen.append(line)

    result = await run_sandboxed_command(
        sandbox, ["definitely-not-installed-xyz"], timeout=5, on_line=on_line
    )
    assert result.returncode == COMMAND_NOT_FOUND
    assert result.stderr_lines
    assert seen[0].startswith("STDERR: definitely-not-installed-xyz")


@pytest.mark.asyncio
async def test_command_timeout(sandbox: Sandbox, write_bin):
    """Test commands exceeding their timeout are killed"""
    write_bin(sandbox, "hang", """
        echo "starting"
        exec sleep 30
    """)
    result = await asyncio.wait_for(
        run_sandboxed_command(sandbox, ["hang"], timeout=0.5), timeout=10
    )
    assert result.timed_out
    assert not result.succeeded
    assert result.stdout_lines == ["starting"]


@pytest.mark.asyncio
async def test_oversized_line_is_truncated(sandbox: Sandbox, write_bin):
    """Test a line longer than the stream limit doesn't break reading"""
    write_bin(sandbox, "flood", """
        echo "before"
        head -c 2000000 /dev/zero | tr '\\0' 'x'
        echo ""
        echo "after" >&2
        echo "done"
    """)
    seen = []

    async def on_line(line: str) -> None:
        seen.append(line)

    result = await run_sandboxed_command(sandbox, ["flood"], timeout=10, on_line=on_line)

    assert result.returncode == 0
    assert not result.timed_out
    assert result.stdout_lines[0] == "before"
    assert result.stdout_lines[-1] == "done"
    assert len(result.stdout_lines) == 3
    flood = result.stdout_lines[1]
    assert set(flood) == {"x"}
    assert STREAM_LIMIT <= len(flood) < 2000000
    assert result.stderr_lines == ["after"]
    assert "STDERR: after" in seen


@pytest.mark.asyncio
async def test_oversized_last_line_without_newline(sandbox: Sandbox, write_bin):
    """Test an oversized line cut off by EOF is still returned"""
    write_bin(sandbox, "flood", """
        head -c 2000000 /dev/zero | tr '\\0' 'y'
    """)

    result = await run_sandboxed_command(sandbox, ["flood"], timeout=10)

    assert result.returncode == 0
    assert len(result.stdout_lines) == 1
    assert set(result.stdout_lines[0]) == {"y"}


@pytest.mark.asyncio
async def test_env_vars_override(sandbox: Sandbox):
    """Test per-command environment variables"""
    result = await run_sandboxed_command(
        sandbox, ["sh", "-c", "echo $FORCE_COLOR"], env_vars={"FORCE_COLOR": "0"}
    )
    assert result.stdout_lines == ["0"]


def test_add_package_manager_bin_path(sandbox: Sandbox):
    """Test node_modules/.bin is prepended once"""
    original_path = sandbox.env_vars["PATH"]
    add_package_manager_bin_path(sandbox)
    add_package_manager_bin_path(sandbox)

    bin_path = str(sandbox.work_dir / "node_modules" / ".bin")
    assert sandbox.env_vars["PATH"] == f"{bin_path}:{original_path}"


@pytest.mark.asyncio
async def test_start_detached_process(sandbox: Sandbox, write_bin):
    """Test detached processes outlive the call and log to a file"""
    write_bin(sandbox, "server", """
        echo "listening"
        exec sleep 30
    """)
    log_path = sandbox.tmp_dir / "server.log"
    pid = start_detached_process(sandbox, ["server"], log_path)
    try:
        assert pid > 0
        os.kill(pid, 0)
        for _ in range(50):
            if "listening" in log_path.read_text():
                break
            await asyncio.sleep(0.1)
        assert "listening" in log_path.read_text()
    finally:
        os.kill(pid, 9)
