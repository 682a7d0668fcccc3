"""Dependency manifest inspection.

Computes which requested packages still need installing and, after an
install, which of them the manifest now declares. package.json is the
source of truth for both questions; exit codes are not.
"""

import json
from typing import List, Tuple

from mcp_sandbox_install.types import DependencyManifest, Environment
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)

SCOPE_MARKER = "@"


def package_lookup_key(spec: str) -> str:
    """Manifest key for a requested package.

    Scoped names (``@scope/name``) are used verbatim; anything else loses a
    trailing ``@version`` suffix.
    """
    if spec.startswith(SCOPE_MARKER):
        return spec
    return spec.split(SCOPE_MARKER)[0]


def read_manifest(env: Environment) -> DependencyManifest:
    """Read package.json from the environment. Raises on any failure."""
    with open(env.manifest_path, "r") as f:
        package_json = json.load(f)

    dependencies = package_json.get("dependencies") or {}
    dev_dependencies = package_json.get("devDependencies") or {}
    if not isinstance(dependencies, dict) or not isinstance(dev_dependencies, dict):
        raise ValueError("dependencies and devDependencies must be objects")

    return DependencyManifest(
        dependencies=dict(dependencies), dev_dependencies=dict(dev_dependencies)
    )


def resolve_install_plan(
    env: Environment, packages: List[str]
) -> Tuple[List[str], List[str]]:
    """Split requested packages into (need_install, already_installed).

    ``need_install`` keeps the original request strings. If the manifest
    can't be read every package is treated as needing install.
    """
    try:
        manifest = read_manifest(env)
    except Exception as e:
        logger.warning(
            "manifest_read_failed",
            env_id=env.id,
            path=str(env.manifest_path),
            error=str(e),
        )
        return list(packages), []

    already_installed = []
    need_install = []
    for pkg in packages:
        key = package_lookup_key(pkg)
        if manifest.has(key):
            already_installed.append(key)
        else:
            need_install.append(pkg)

    logger.info(
        "install_plan_resolved",
        env_id=env.id,
        already_installed=already_installed,
        need_install=need_install,
    )
    return need_install, already_installed


def verify_installed(env: Environment, plan: List[str]) -> List[str]:
    """Requests from ``plan`` whose lookup key the manifest now declares."""
    try:
        manifest = read_manifest(env)
    except Exception as e:
        logger.error("manifest_verify_failed", env_id=env.id, error=str(e))
        return []

    installed = []
    for pkg in plan:
        if manifest.has(package_lookup_key(pkg)):
            installed.append(pkg)
            logger.debug("package_verified", package=pkg)
        else:
            logger.warning("package_not_in_manifest", package=pkg)

    return installed
