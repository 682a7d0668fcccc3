"""Core type definitions"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, Dict, List, Optional


class PackageManager(Enum):
    PNPM = "pnpm"
    NPM = "npm"


class ProgressKind(Enum):
    START = "start"
    STATUS = "status"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    OUTPUT = "output"
    SUCCESS = "success"
    COMPLETE = "complete"


class ConflictTag(Enum):
    PEER_DEPENDENCY = "peer_dependency"
    RESOLUTION = "resolution"


@dataclass(frozen=True)
class PackageManagerConfig:
    """Package manager configuration"""
    name: PackageManager
    binary_name: str
    lockfile: str
    install_args: List[str]
    refresh_args: List[str]
    lockfile_error: Optional[str] = None

    def install_command(self, packages: List[str]) -> List[str]:
        return [self.binary_name, *self.install_args, *packages]

    def refresh_command(self) -> List[str]:
        return [self.binary_name, *self.refresh_args]


@dataclass(frozen=True)
class Sandbox:
    """Isolated execution environment"""
    root: Path
    work_dir: Path
    bin_dir: Path
    tmp_dir: Path
    cache_dir: Path
    env_vars: dict[str, str]
    temp_dir: TemporaryDirectory


@dataclass(frozen=True)
class Environment:
    """Target environment handle passed to every install operation"""
    id: str
    sandbox: Sandbox
    package_manager: PackageManagerConfig
    created_at: datetime

    @property
    def work_dir(self) -> Path:
        return self.sandbox.work_dir

    @property
    def manifest_path(self) -> Path:
        return self.sandbox.work_dir / "package.json"


@dataclass(frozen=True)
class ProgressEvent:
    """A single message in the install progress stream"""
    kind: ProgressKind
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, "message": self.message, **self.payload}


@dataclass(frozen=True)
class DependencyManifest:
    """Snapshot of the runtime and development partitions of package.json"""
    dependencies: Dict[str, str]
    dev_dependencies: Dict[str, str]

    def has(self, name: str) -> bool:
        return name in self.dependencies or name in self.dev_dependencies


@dataclass(frozen=True)
class CommandResult:
    """Captured result of one external command"""
    returncode: int
    stdout_lines: List[str]
    stderr_lines: List[str]
    timed_out: bool = False

    @property
    def output(self) -> str:
        return "\n".join(self.stdout_lines + self.stderr_lines)

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0 and not self.timed_out


@dataclass(frozen=True)
class InstallResult:
    """Final outcome of the install stage, across all attempts"""
    returncode: int
    output: str
    final_output: str
    tags: List[ConflictTag]
    attempts: int
    recovered: bool = False
