"""Error handling for the sandbox install server."""
from typing import Any, Dict, Optional

from mcp.types import ErrorData, INVALID_PARAMS, INTERNAL_ERROR

from mcp_sandbox_install.logging import get_logger

logger = get_logger(__name__)


def log_error(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    logger: Optional[Any] = None,
) -> None:
    """Log an error with context."""
    logger = logger or get_logger(__name__)

    error_info = {
        "error_type": error.__class__.__name__,
        "error_message": str(error),
    }
    if context:
        error_info["context"] = context
    if isinstance(error, InstallerError):
        error_info["code"] = error.code
        error_info["details"] = error.details

    logger.error("installer_error", **error_info)


class InstallerError(Exception):
    """Base error class for the installer."""
    def __init__(
        self,
        message: str,
        code: int = INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}

    def to_error_data(self) -> ErrorData:
        """Convert to ErrorData format."""
        return ErrorData(
            code=self.code,
            message=str(self),
            data=self.details
        )


class InvalidPackagesError(InstallerError):
    """Rejected package request."""
    def __init__(self, message: str, packages: Any = None):
        super().__init__(
            message,
            code=INVALID_PARAMS,
            details={"packages": packages}
        )


class InvalidEnvError(InstallerError):
    """Error for invalid/missing environment."""
    def __init__(self, env_id: str):
        super().__init__(
            f"Environment {env_id} not found",
            code=INVALID_PARAMS,
            details={"env_id": env_id}
        )


class SandboxError(InstallerError):
    """Sandbox operation error."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=INTERNAL_ERROR, details=details)


class ConfigError(InstallerError):
    """Invalid installer configuration."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=INTERNAL_ERROR, details=details)
