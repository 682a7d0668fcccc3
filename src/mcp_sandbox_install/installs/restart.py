"""Dev server restart inside an environment.

The dev server's pid lives in a file in the sandbox tmp dir, not in memory,
so a later and unrelated operation can find and stop it. The value may be
missing, stale or point at a dead process.
"""

import asyncio
import os
from pathlib import Path
from typing import List, Optional

import psutil

from mcp_sandbox_install.types import Environment
from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.installs.output import STATUS_MARKER
from mcp_sandbox_install.sandboxes.sandbox import LineHandler, start_detached_process
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

TERMINATE_TIMEOUT = 3.0
DEV_SERVER_LOG = "dev-server.log"


def pid_file_path(env: Environment, config: InstallerConfig) -> Path:
    return env.sandbox.tmp_dir / config.pid_file_name


def read_pid_file(path: Path) -> Optional[int]:
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None


def _terminate(procs: List[psutil.Process]) -> List[int]:
    signalled = []
    for proc in procs:
        try:
            proc.terminate()
            signalled.append(proc)
        except psutil.Error:
            continue

    _, alive = psutil.wait_procs(signalled, timeout=TERMINATE_TIMEOUT)
    for proc in alive:
        try:
            proc.kill()
        except psutil.Error:
            continue
    return [proc.pid for proc in signalled]


def _recorded_process(env: Environment, config: InstallerConfig) -> Optional[psutil.Process]:
    path = pid_file_path(env, config)
    pid = read_pid_file(path)
    if pid is None:
        return None

    try:
        proc = psutil.Process(pid)
        # A process younger than the pid file is a reused pid
        if proc.create_time() > path.stat().st_mtime + 1:
            logger.debug("dev_server_pid_reused", env_id=env.id, pid=pid)
            return None
        return proc
    except (psutil.Error, OSError):
        return None


def _matching_processes(env: Environment, pattern: str) -> List[psutil.Process]:
    """Processes whose command line contains ``pattern`` and that run in the sandbox."""
    matches = []
    root = str(env.sandbox.root)
    own_pid = os.getpid()
    for proc in psutil.process_iter(["pid", "cmdline", "cwd"]):
        if proc.pid == own_pid:
            continue
        cmdline = " ".join(proc.info.get("cmdline") or [])
        cwd = proc.info.get("cwd") or ""
        if pattern in cmdline and cwd.startswith(root):
            matches.append(proc)
    return matches


def stop_dev_server(env: Environment, config: InstallerConfig) -> List[int]:
    """Stop the recorded dev server and any stray dev server processes.

    Returns the pids that were signalled; nothing running is not an error.
    """
    stopped = []

    proc = _recorded_process(env, config)
    if proc:
        stopped.extend(_terminate([proc]))
        logger.info("dev_server_stopped", env_id=env.id, pid=proc.pid)
    else:
        logger.debug("dev_server_not_running", env_id=env.id)

    strays = [p for p in _matching_processes(env, config.dev_process_pattern) if p.pid not in stopped]
    if strays:
        stopped.extend(_terminate(strays))
        logger.info(
            "dev_server_strays_stopped",
            env_id=env.id,
            pids=[p.pid for p in strays],
        )

    return stopped


def touch_watch_files(env: Environment, config: InstallerConfig) -> List[str]:
    """Bump mtimes so the dev server's file watcher reloads dependencies."""
    touched = []
    for name in config.watch_files:
        path = env.work_dir / name
        if path.exists():
            path.touch()
            touched.append(name)
    return touched


async def restart_dev_server(
    env: Environment,
    config: InstallerConfig,
    on_line: Optional[LineHandler] = None,
) -> int:
    """Stop any running dev server, start a new one and record its pid.

    There is no rollback: if the new server fails to start the exception
    propagates and the environment is left without a server.
    """
    stopped = await asyncio.to_thread(stop_dev_server, env, config)
    if on_line:
        if stopped:
            await on_line(f"{STATUS_MARKER} Stopped existing dev server (pid {', '.join(map(str, stopped))})")
        else:
            await on_line("No existing dev server process found")

    await asyncio.sleep(config.port_release_delay)

    pid = start_detached_process(
        env.sandbox,
        config.dev_command,
        env.sandbox.tmp_dir / DEV_SERVER_LOG,
        env_vars={"FORCE_COLOR": "0"},
    )
    pid_file_path(env, config).write_text(str(pid))
    logger.info("dev_server_started", env_id=env.id, pid=pid, cmd=config.dev_command)
    if on_line:
        await on_line(f"Dev server restarted with PID: {pid}")

    await asyncio.sleep(config.startup_delay)

    touched = touch_watch_files(env, config)
    logger.debug("watch_files_touched", env_id=env.id, files=touched)
    if on_line:
        await on_line("Dev server restarted and should now recognize all packages")

    return pid
