"""Environment lifecycle management."""
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from fuuid import b58_fuuid

from mcp_sandbox_install.types import Environment
from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.environments.managers import (
    detect_package_manager,
    setup_node_binaries,
)
from mcp_sandbox_install.errors import InvalidEnvError, SandboxError
from mcp_sandbox_install.installs.restart import stop_dev_server
from mcp_sandbox_install.sandboxes.sandbox import create_sandbox, cleanup_sandbox
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

# In-memory environment store
_ENVIRONMENTS: Dict[str, Environment] = {}


async def create_environment_from_path(path: Path) -> Environment:
    """Create new environment from filesystem path."""
    path = Path(path)
    if not path.is_dir():
        raise SandboxError(f"Project path does not exist: {path}", {"path": str(path)})

    env_id = b58_fuuid()
    sandbox = await create_sandbox(f"mcp-{env_id}-")

    shutil.copytree(path, sandbox.work_dir, dirs_exist_ok=True)
    os.chmod(sandbox.work_dir, 0o700)
    os.chmod(sandbox.bin_dir, 0o700)

    package_manager = detect_package_manager(sandbox)
    setup_node_binaries(sandbox)

    env = Environment(
        id=env_id,
        sandbox=sandbox,
        package_manager=package_manager,
        created_at=datetime.now(timezone.utc),
    )

    _ENVIRONMENTS[env_id] = env
    logger.info(
        "environment_created",
        env_id=env_id,
        work_dir=str(sandbox.work_dir),
        package_manager=package_manager.name.value,
    )
    return env


def get_environment(env_id: str) -> Optional[Environment]:
    """Get environment by ID."""
    return _ENVIRONMENTS.get(env_id)


def require_environment(env_id: str) -> Environment:
    """Get a usable environment by ID or raise."""
    env = get_environment(env_id)
    if not env:
        raise InvalidEnvError(env_id)
    if not env.work_dir.is_dir():
        raise SandboxError(
            f"Environment {env_id} has no working directory",
            {"env_id": env_id, "work_dir": str(env.work_dir)},
        )
    return env


def cleanup_environment(env: Environment, config: Optional[InstallerConfig] = None) -> None:
    """Stop the environment's dev server and remove its resources."""
    stop_dev_server(env, config or InstallerConfig())
    if env.id in _ENVIRONMENTS:
        del _ENVIRONMENTS[env.id]
    cleanup_sandbox(env.sandbox)
    logger.info("environment_cleaned", env_id=env.id)
