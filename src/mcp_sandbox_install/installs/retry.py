"""Package installation with one-shot lockfile recovery."""

from typing import List, Optional

from mcp_sandbox_install.types import (
    CommandResult,
    ConflictTag,
    Environment,
    InstallResult,
)
from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.installs.output import (
    ERROR_MARKER,
    PEER_DEPENDENCY_MARKER,
    RESOLUTION_CONFLICT_MARKER,
    STATUS_MARKER,
    WARNING_MARKER,
)
from mcp_sandbox_install.sandboxes.sandbox import LineHandler, run_sandboxed_command
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

PEER_DEPENDENCY_ERROR = "ERR_PNPM_PEER_DEPENDENCY_ISSUES"
RESOLUTION_ERROR = "ERESOLVE"

CONFLICT_MESSAGES = {
    ConflictTag.PEER_DEPENDENCY: (
        f"{PEER_DEPENDENCY_MARKER} Peer dependency issues detected. "
        "Consider running 'pnpm install --force' if necessary."
    ),
    ConflictTag.RESOLUTION: (
        f"{RESOLUTION_CONFLICT_MARKER} Dependency conflict detected - "
        "consider using --legacy-peer-deps flag"
    ),
}


async def _emit(on_line: Optional[LineHandler], line: str) -> None:
    if on_line:
        await on_line(line)


async def _run_attempt(
    env: Environment,
    args: List[str],
    timeout: float,
    on_line: Optional[LineHandler],
) -> CommandResult:
    await _emit(on_line, f"{STATUS_MARKER} Running command: {' '.join(args)}")
    result = await run_sandboxed_command(env.sandbox, args, timeout=timeout, on_line=on_line)
    if result.timed_out:
        await _emit(
            on_line,
            f"{ERROR_MARKER} Command timed out after {timeout:g}s: {' '.join(args)}",
        )
    return result


def detect_conflicts(stderr_text: str) -> List[ConflictTag]:
    """Conflict signatures present in stderr. Informational only."""
    tags = []
    if PEER_DEPENDENCY_ERROR in stderr_text:
        tags.append(ConflictTag.PEER_DEPENDENCY)
    if RESOLUTION_ERROR in stderr_text:
        tags.append(ConflictTag.RESOLUTION)
    return tags


def is_lockfile_stale(env: Environment, result: CommandResult) -> bool:
    signature = env.package_manager.lockfile_error
    return (
        signature is not None
        and not result.succeeded
        and signature in result.output
    )


async def install_with_recovery(
    env: Environment,
    plan: List[str],
    config: InstallerConfig,
    on_line: Optional[LineHandler] = None,
) -> InstallResult:
    """Install ``plan``, refreshing a stale lockfile and retrying once.

    The refresh only replaces the first attempt's result when it succeeds
    and the retried install has run; a failed refresh leaves the first
    attempt as the final result.
    """
    manager = env.package_manager
    install_cmd = manager.install_command(plan)
    outputs: List[str] = []
    stderr_lines: List[str] = []

    def record(result: CommandResult) -> None:
        outputs.append(result.output)
        stderr_lines.extend(result.stderr_lines)

    logger.info("install_attempt_start", env_id=env.id, attempt=1, packages=plan)
    await _emit(on_line, f"{STATUS_MARKER} Attempt 1: Installing packages: {' '.join(plan)}")
    final = await _run_attempt(env, install_cmd, config.command_timeout, on_line)
    record(final)
    attempts = 1
    recovered = False

    if is_lockfile_stale(env, final):
        logger.warning(
            "lockfile_outdated",
            env_id=env.id,
            signature=manager.lockfile_error,
            returncode=final.returncode,
        )
        await _emit(
            on_line,
            f"{WARNING_MARKER} Detected '{manager.lockfile_error}'. "
            "Attempting to update lockfile and retry.",
        )
        refresh_cmd = manager.refresh_command()
        await _emit(
            on_line,
            f"{STATUS_MARKER} Attempting to update lockfile with '{' '.join(refresh_cmd)}'...",
        )
        refresh = await _run_attempt(env, refresh_cmd, config.recovery_timeout, on_line)
        record(refresh)

        if not refresh.succeeded:
            logger.error(
                "lockfile_refresh_failed",
                env_id=env.id,
                returncode=refresh.returncode,
                timed_out=refresh.timed_out,
            )
            await _emit(
                on_line,
                f"{ERROR_MARKER} Failed to update lockfile. "
                "The original package installation error might persist.",
            )
        else:
            logger.info("install_attempt_start", env_id=env.id, attempt=2, packages=plan)
            await _emit(
                on_line,
                f"{STATUS_MARKER} Lockfile updated successfully. "
                "Attempt 2: Retrying package installation.",
            )
            final = await _run_attempt(env, install_cmd, config.command_timeout, on_line)
            record(final)
            attempts = 2
            recovered = final.succeeded

    tags = detect_conflicts("\n".join(stderr_lines))
    for tag in tags:
        logger.warning("dependency_conflict", env_id=env.id, conflict=tag.value)
        await _emit(on_line, CONFLICT_MESSAGES[tag])

    returncode = final.returncode
    if final.timed_out and returncode == 0:
        returncode = -1

    await _emit(on_line, f"Installation completed with code: {returncode}")
    logger.info(
        "install_complete",
        env_id=env.id,
        returncode=returncode,
        attempts=attempts,
        recovered=recovered,
        conflicts=[t.value for t in tags],
    )

    return InstallResult(
        returncode=returncode,
        output="\n".join(o for o in outputs if o),
        final_output=final.output,
        tags=tags,
        attempts=attempts,
        recovered=recovered,
    )
