import json
import textwrap
from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from mcp_sandbox_install.config import InstallerConfig
from mcp_sandbox_install.environments.managers import NPM_CONFIG, PNPM_CONFIG
from mcp_sandbox_install.installs.restart import stop_dev_server
from mcp_sandbox_install.sandboxes.sandbox import create_sandbox
from mcp_sandbox_install.types import Environment, Sandbox


@pytest_asyncio.fixture
async def sandbox():
    """Create a real temporary sandbox for testing"""
    sandbox = await create_sandbox("test-")
    try:
        yield sandbox
    finally:
        sandbox.temp_dir.cleanup()


@pytest.fixture
def fast_config() -> InstallerConfig:
    """Config with short timeouts and no restart delays"""
    return InstallerConfig(
        command_timeout=5,
        recovery_timeout=10,
        operation_timeout=30,
        port_release_delay=0,
        startup_delay=0,
    )


@pytest.fixture
def write_manifest():
    """Write package.json into an environment's work dir"""
    def _write(env: Environment, dependencies=None, dev_dependencies=None, path=None):
        target = path or env.manifest_path
        target.write_text(json.dumps({
            "name": "app",
            "dependencies": dependencies or {},
            "devDependencies": dev_dependencies or {},
        }))
        return target
    return _write


@pytest.fixture
def write_bin():
    """Install a fake executable into the sandbox bin dir"""
    def _write(sandbox: Sandbox, name: str, body: str) -> Path:
        script = sandbox.bin_dir / name
        script.write_text("#!/bin/sh\n" + textwrap.dedent(body).lstrip())
        script.chmod(0o755)
        return script
    return _write


@pytest_asyncio.fixture
async def node_env(sandbox: Sandbox, fast_config: InstallerConfig, write_manifest):
    """pnpm environment whose manifest already has lodash and react"""
    env = Environment(
        id="test-env-1",
        sandbox=sandbox,
        package_manager=PNPM_CONFIG,
        created_at=datetime.now(timezone.utc),
    )
    write_manifest(env, {"lodash": "^4.17.21"}, {"react": "^18.2.0"})
    try:
        yield env
    finally:
        stop_dev_server(env, fast_config)


@pytest_asyncio.fixture
async def npm_env(sandbox: Sandbox, fast_config: InstallerConfig, write_manifest):
    """npm environment with an empty manifest"""
    env = Environment(
        id="test-env-npm",
        sandbox=sandbox,
        package_manager=NPM_CONFIG,
        created_at=datetime.now(timezone.utc),
    )
    write_manifest(env)
    try:
        yield env
    finally:
        stop_dev_server(env, fast_config)


@pytest.fixture
def fake_dev_server(node_env: Environment, write_bin):
    """`npm run dev` that just stays alive"""
    return write_bin(node_env.sandbox, "npm", "exec sleep 30\n")
