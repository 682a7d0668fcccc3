"""Sandbox directory and command execution management."""

import asyncio
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from mcp_sandbox_install.types import CommandResult, Sandbox
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

LineHandler = Callable[[str], Awaitable[None]]

STDERR_MARKER = "STDERR:"
COMMAND_NOT_FOUND = 127
STREAM_LIMIT = 1024 * 1024


def get_system_paths() -> str:
    """Get essential system binary paths for the current platform."""
    match sys.platform:
        case "darwin":
            return "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"
        case "linux":
            return "/usr/local/bin:/usr/bin:/bin:/usr/local/sbin:/usr/sbin:/sbin"
        case _:
            raise RuntimeError(f"Unsupported platform: {sys.platform}")


async def create_sandbox(prefix: str) -> Sandbox:
    """Create new sandbox environment with isolated directories."""

    temp_dir = tempfile.TemporaryDirectory(prefix=prefix)
    root = Path(temp_dir.name)

    dirs = {
        "bin": root / "bin",
        "tmp": root / "tmp",
        "work": root / "work",
        "cache": root / "cache",
    }

    for path in dirs.values():
        path.mkdir(parents=True, exist_ok=True)

    env_vars = {
        "PATH": f"{dirs['bin']}:{get_system_paths()}",
        "TMPDIR": str(dirs["tmp"]),
        "HOME": str(dirs["work"]),
        "XDG_CACHE_HOME": str(dirs["cache"]),
        "XDG_RUNTIME_DIR": str(dirs["tmp"]),
    }

    sandbox = Sandbox(
        root=root,
        work_dir=dirs["work"],
        bin_dir=dirs["bin"],
        tmp_dir=dirs["tmp"],
        cache_dir=dirs["cache"],
        env_vars=env_vars,
        temp_dir=temp_dir,
    )

    logger.info("sandbox_created", root=str(root), work_dir=str(dirs["work"]))

    return sandbox


def add_package_manager_bin_path(sandbox: Sandbox) -> None:
    """Add node_modules/.bin to the front of the sandbox PATH"""

    pkg_bin_path = sandbox.work_dir / "node_modules" / ".bin"
    current_path = sandbox.env_vars["PATH"]
    if current_path.startswith(f"{pkg_bin_path}:"):
        return

    sandbox.env_vars["PATH"] = f"{pkg_bin_path}:{current_path}"
    logger.debug("updated_sandbox_path", bin_path=str(pkg_bin_path))


def cleanup_sandbox(sandbox: Sandbox) -> None:
    """Clean up sandbox environment."""

    logger.debug("cleaning_sandbox", root=str(sandbox.root))
    sandbox.temp_dir.cleanup()


async def _read_line(stream: asyncio.StreamReader) -> bytes:
    """Read one line; lines longer than the stream limit are truncated."""
    try:
        return await stream.readuntil(b"\n")
    except asyncio.IncompleteReadError as e:
        return e.partial
    except asyncio.LimitOverrunError as e:
        head = await stream.read(e.consumed)
        logger.warning("sandbox_output_line_truncated", kept_bytes=len(head))

    # drop the rest of the oversized line
    while True:
        try:
            await stream.readuntil(b"\n")
            break
        except asyncio.IncompleteReadError:
            break
        except asyncio.LimitOverrunError as e:
            await stream.read(e.consumed)
    return head


async def _pump_lines(
    stream: asyncio.StreamReader,
    lines: List[str],
    on_line: Optional[LineHandler],
    prefix: str = "",
) -> None:
    while raw := await _read_line(stream):
        line = raw.decode(errors="replace").strip()
        if not line:
            continue
        lines.append(line)
        if on_line:
            await on_line(f"{prefix}{line}")


async def run_sandboxed_command(
    sandbox: Sandbox,
    args: List[str],
    timeout: Optional[float] = None,
    on_line: Optional[LineHandler] = None,
    env_vars: dict[str, str] | None = None,
) -> CommandResult:
    """Run command in sandbox, streaming its output line by line.

    Stdout lines are forwarded to ``on_line`` verbatim, stderr lines are
    forwarded with a ``STDERR:`` prefix. A command that outlives ``timeout``
    is killed and reported as timed out.
    """

    cmd_env = {**sandbox.env_vars, **(env_vars or {})}
    cmd = " ".join(args)

    logger.debug("sandbox_cmd_exec", cmd=cmd, timeout=timeout)

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=sandbox.work_dir,
            env=cmd_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.warning("sandbox_cmd_not_runnable", cmd=cmd, error=str(e))
        message = f"{args[0]}: {e.strerror or e}"
        if on_line:
            await on_line(f"{STDERR_MARKER} {message}")
        return CommandResult(
            returncode=COMMAND_NOT_FOUND, stdout_lines=[], stderr_lines=[message]
        )

    stdout_lines: List[str] = []
    stderr_lines: List[str] = []
    timed_out = False

    try:
        await asyncio.wait_for(
            asyncio.gather(
                _pump_lines(process.stdout, stdout_lines, on_line),
                _pump_lines(process.stderr, stderr_lines, on_line, f"{STDERR_MARKER} "),
                process.wait(),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        timed_out = True
        logger.warning("sandbox_cmd_timeout", cmd=cmd, timeout=timeout)
    finally:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()

    logger.debug(
        "sandbox_cmd_complete",
        cmd=cmd,
        returncode=process.returncode,
        timed_out=timed_out,
        stdout_lines=len(stdout_lines),
        stderr_lines=len(stderr_lines),
    )

    return CommandResult(
        returncode=process.returncode,
        stdout_lines=stdout_lines,
        stderr_lines=stderr_lines,
        timed_out=timed_out,
    )


def start_detached_process(
    sandbox: Sandbox,
    args: List[str],
    log_path: Path,
    env_vars: dict[str, str] | None = None,
) -> int:
    """Start a long-running process in its own session and return its pid.

    The process is not tied to the caller: its output goes to ``log_path``
    and it keeps running after the current operation returns.
    """

    cmd_env = {**sandbox.env_vars, **(env_vars or {})}

    with open(log_path, "ab") as log:
        process = subprocess.Popen(
            args,
            cwd=sandbox.work_dir,
            env=cmd_env,
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )

    logger.info(
        "sandbox_process_started",
        cmd=" ".join(args),
        pid=process.pid,
        log_path=str(log_path),
    )
    return process.pid
