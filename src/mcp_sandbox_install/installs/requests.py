"""Package request validation."""

from typing import Any, List

from mcp_sandbox_install.errors import InvalidPackagesError
from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)


def normalize_packages(raw: Any) -> List[str]:
    """Trim, drop blanks and dedupe requested package identifiers.

    Order of first occurrence is kept and comparison is case-sensitive.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        raise InvalidPackagesError("Packages array is required", raw)

    packages: List[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        name = item.strip()
        if name and name not in packages:
            packages.append(name)

    if not packages:
        raise InvalidPackagesError("No valid package names provided", list(raw))

    if len(packages) != len(raw):
        logger.info(
            "packages_cleaned",
            removed=len(raw) - len(packages),
            original=list(raw),
            cleaned=packages,
        )

    return packages
