"""Package manager detection and setup."""

import shutil
from typing import Dict

from mcp_sandbox_install.types import PackageManager, PackageManagerConfig, Sandbox
from mcp_sandbox_install.logging import get_logger
from mcp_sandbox_install.sandboxes.sandbox import add_package_manager_bin_path

logger = get_logger(__name__)

PNPM_CONFIG = PackageManagerConfig(
    name=PackageManager.PNPM,
    binary_name="pnpm",
    lockfile="pnpm-lock.yaml",
    install_args=["install"],
    refresh_args=["install", "--no-frozen-lockfile"],
    lockfile_error="ERR_PNPM_OUTDATED_LOCKFILE",
)

# npm rewrites its lockfile on every install, so there is nothing to recover from
NPM_CONFIG = PackageManagerConfig(
    name=PackageManager.NPM,
    binary_name="npm",
    lockfile="package-lock.json",
    install_args=["install"],
    refresh_args=["install"],
)

PACKAGE_MANAGER_CONFIGS: Dict[PackageManager, PackageManagerConfig] = {
    PackageManager.PNPM: PNPM_CONFIG,
    PackageManager.NPM: NPM_CONFIG,
}

DEFAULT_PACKAGE_MANAGER = PackageManager.PNPM

# Host binaries linked into the sandbox bin dir
NODE_BINARIES = ["node", "npm", "npx", "pnpm"]


def detect_package_manager(sandbox: Sandbox) -> PackageManagerConfig:
    """Detect package manager from the lockfile in the project root."""
    for config in PACKAGE_MANAGER_CONFIGS.values():
        if (sandbox.work_dir / config.lockfile).exists():
            logger.debug("package_manager_detected", package_manager=config.name.value)
            return config

    logger.debug(
        "package_manager_defaulted", package_manager=DEFAULT_PACKAGE_MANAGER.value
    )
    return PACKAGE_MANAGER_CONFIGS[DEFAULT_PACKAGE_MANAGER]


def setup_node_binaries(sandbox: Sandbox) -> list[str]:
    """Symlink the host node toolchain into the sandbox bin dir.

    Binaries missing on the host are skipped; the install stage reports
    them when it tries to run them.
    """
    linked = []
    for name in NODE_BINARIES:
        target = sandbox.bin_dir / name
        if target.exists():
            linked.append(name)
            continue

        host_path = shutil.which(name)
        if not host_path:
            logger.warning("node_binary_missing", binary=name)
            continue

        target.symlink_to(host_path)
        linked.append(name)

    add_package_manager_bin_path(sandbox)
    sandbox.env_vars["NODE_NO_WARNINGS"] = "1"
    return linked
