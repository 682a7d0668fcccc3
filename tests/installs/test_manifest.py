import pytest

from mcp_sandbox_install.installs.manifest import (
    package_lookup_key,
    read_manifest,
    resolve_install_plan,
    verify_installed,
)
from mcp_sandbox_install.types import Environment


@pytest.mark.parametrize("spec,expected", [
    ("lodash", "lodash"),
    ("axios@1.2.0", "axios"),
    ("react@^18", "react"),
    ("@types/node", "@types/node"),
    ("@types/node@20.1.0", "@types/node@20.1.0"),
    ("@scope/pkg", "@scope/pkg"),
])
def test_package_lookup_key(spec, expected):
    """Test version suffix stripping and scoped names"""
    assert package_lookup_key(spec) == expected


def test_read_manifest(node_env: Environment):
    """Test both partitions are read"""
    manifest = read_manifest(node_env)
    assert manifest.dependencies == {"lodash": "^4.17.21"}
    assert manifest.dev_dependencies == {"react": "^18.2.0"}
    assert manifest.has("lodash")
    assert manifest.has("react")
    assert not manifest.has("axios")


def test_read_manifest_without_partitions(node_env: Environment):
    """Test a manifest with no dependency sections"""
    node_env.manifest_path.write_text('{"name": "app"}')
    manifest = read_manifest(node_env)
    assert manifest.dependencies == {}
    assert manifest.dev_dependencies == {}


def test_read_manifest_rejects_bad_partitions(node_env: Environment):
    """Test partitions must be mappings"""
    node_env.manifest_path.write_text('{"dependencies": ["lodash"]}')
    with pytest.raises(ValueError):
        read_manifest(node_env)


def test_resolve_plan_excludes_installed(node_env: Environment):
    """Test packages present in either partition are skipped"""
    plan, already = resolve_install_plan(
        node_env, ["lodash", "axios@1.2.0", "react@18.2.0", "@tanstack/react-query"]
    )
    assert plan == ["axios@1.2.0", "@tanstack/react-query"]
    assert already == ["lodash", "react"]


def test_resolve_plan_all_installed(node_env: Environment):
    """Test an empty plan when everything is declared"""
    plan, already = resolve_install_plan(node_env, ["lodash", "react"])
    assert plan == []
    assert already == ["lodash", "react"]


def test_resolve_plan_is_case_sensitive(node_env: Environment):
    """Test package names match exactly"""
    plan, _ = resolve_install_plan(node_env, ["Lodash"])
    assert plan == ["Lodash"]


def test_resolve_plan_fails_open_on_missing_manifest(node_env: Environment):
    """Test a missing manifest means installing everything"""
    node_env.manifest_path.unlink()
    plan, already = resolve_install_plan(node_env, ["lodash", "axios"])
    assert plan == ["lodash", "axios"]
    assert already == []


def test_resolve_plan_fails_open_on_invalid_json(node_env: Environment):
    """Test an unparseable manifest means installing everything"""
    node_env.manifest_path.write_text("{not json")
    plan, _ = resolve_install_plan(node_env, ["lodash"])
    assert plan == ["lodash"]


def test_verify_installed_keeps_request_strings(node_env: Environment, write_manifest):
    """Test verified packages are reported as requested"""
    write_manifest(node_env, {"lodash": "^4", "axios": "1.2.0"}, {"@types/node": "^20"})
    installed = verify_installed(node_env, ["axios@1.2.0", "@types/node", "zod"])
    assert installed == ["axios@1.2.0", "@types/node"]


def test_verify_installed_nothing(node_env: Environment):
    """Test nothing is verified when the manifest didn't change"""
    assert verify_installed(node_env, ["axios"]) == []


def test_verify_installed_unreadable_manifest(node_env: Environment):
    """Test a manifest read failure verifies nothing"""
    node_env.manifest_path.unlink()
    assert verify_installed(node_env, ["lodash"]) == []
