"""Install orchestration and progress streaming."""

import asyncio
from typing import Any, List, Optional

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from mcp_sandbox_install.types import Environment, ProgressEvent, ProgressKind
from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.errors import log_error
from mcp_sandbox_install.installs.manifest import resolve_install_plan, verify_installed
from mcp_sandbox_install.installs.output import classify_line
from mcp_sandbox_install.installs.requests import normalize_packages
from mcp_sandbox_install.installs.restart import restart_dev_server
from mcp_sandbox_install.installs.retry import install_with_recovery
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

STREAM_BUFFER_SIZE = 100


async def run_install(
    env: Environment,
    packages: List[str],
    send_stream: MemoryObjectSendStream,
    config: InstallerConfig,
) -> None:
    """Install ``packages`` into ``env`` and restart its dev server.

    ``packages`` must already be normalized. Progress is written to
    ``send_stream`` in stage order and the stream is closed on every exit
    path. Failures after this point become ``error`` events; nothing is
    raised to the caller.
    """
    async with send_stream:

        async def send(kind: ProgressKind, message: str, **payload: Any) -> None:
            await send_stream.send(ProgressEvent(kind=kind, message=message, payload=payload))

        async def forward(line: str) -> None:
            event = classify_line(line)
            if event:
                await send_stream.send(event)

        try:
            count = len(packages)
            await send(
                ProgressKind.START,
                f"Installing {count} package{'s' if count > 1 else ''}...",
                packages=packages,
            )

            await send(ProgressKind.STATUS, "Checking installed packages...")
            plan, _ = resolve_install_plan(env, packages)

            if not plan:
                await send(
                    ProgressKind.SUCCESS,
                    "All packages are already installed",
                    installedPackages=[],
                    alreadyInstalled=packages,
                )
                return

            await send(
                ProgressKind.INFO,
                f"Installing {len(plan)} new package(s): {', '.join(plan)}",
                packages=plan,
            )

            try:
                result = await asyncio.wait_for(
                    install_with_recovery(env, plan, config, forward),
                    timeout=config.operation_timeout,
                )
                if result.returncode != 0:
                    await send(
                        ProgressKind.ERROR,
                        f"Package installation exited with code {result.returncode}",
                    )
            except asyncio.TimeoutError:
                logger.error(
                    "install_operation_timeout",
                    env_id=env.id,
                    timeout=config.operation_timeout,
                )
                await send(
                    ProgressKind.ERROR,
                    f"Package installation timed out after {config.operation_timeout:g}s",
                )
            except Exception as e:
                log_error(e, {"env_id": env.id, "packages": plan, "stage": "install"}, logger)
                await send(
                    ProgressKind.ERROR,
                    f"Package installation failed: {str(e) or e.__class__.__name__}",
                )

            installed = verify_installed(env, plan)
            if installed:
                await send(
                    ProgressKind.SUCCESS,
                    f"Successfully installed: {', '.join(installed)}",
                    installedPackages=installed,
                )
            else:
                await send(ProgressKind.ERROR, "Failed to verify package installation")

            await send(ProgressKind.STATUS, "Restarting development server...")
            await restart_dev_server(env, config, forward)

            await send(
                ProgressKind.COMPLETE,
                "Package installation complete and dev server restarted!",
                installedPackages=installed,
            )
        except Exception as e:
            log_error(e, {"env_id": env.id, "packages": packages}, logger)
            await send(ProgressKind.ERROR, str(e) or e.__class__.__name__)


async def collect_install_events(
    env: Environment,
    packages: Any,
    config: Optional[InstallerConfig] = None,
) -> List[ProgressEvent]:
    """Validate ``packages``, run the install and gather every event in order.

    Invalid input raises InvalidPackagesError before the environment is
    touched.
    """
    packages = normalize_packages(packages)
    config = config or InstallerConfig.from_env()

    send_stream, receive_stream = anyio.create_memory_object_stream(STREAM_BUFFER_SIZE)
    events: List[ProgressEvent] = []

    async with anyio.create_task_group() as tg:
        tg.start_soon(run_install, env, packages, send_stream, config)
        async with receive_stream:
            async for event in receive_stream:
                logger.debug(
                    "install_progress",
                    env_id=env.id,
                    kind=event.kind.value,
                    message=event.message,
                )
                events.append(event)

    logger.info(
        "install_stream_closed",
        env_id=env.id,
        events=len(events),
        final=events[-1].kind.value if events else None,
    )
    return events
