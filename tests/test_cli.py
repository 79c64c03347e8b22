"""CLI tests: dry-run create, create failure handling and the read-only commands."""

import argparse
from unittest.mock import AsyncMock, patch

import pytest

from qcmachine.commands.create import register_create_command
from qcmachine.driver import Driver, DriverState
from qcmachine.provisioning.errors import APIError, NotFoundError
from qcmachine.store import load_state, machine_exists, save_state

_NO_CREDENTIALS = {"QINGCLOUD_ACCESS_KEY_ID": "", "QINGCLOUD_SECRET_ACCESS_KEY": "", "QINGCLOUD_ZONE": ""}


# ── Dry-run create ────────────────────────────────────────────────


def test_create_dry_run(run_cli, tmp_path):
    rc, stdout, _ = run_cli(
        "create", "docker-host",
        "--storage-path", str(tmp_path),
        "--qingcloud-zone", "sh1a",
        "--qingcloud-cpu", "2",
        "--dry-run",
        env=_NO_CREDENTIALS,
    )
    assert rc == 0
    assert "[dry-run] RunInstances (zone=sh1a)" in stdout
    assert '"cpu": 2' in stdout
    assert '"vxnets.1": "vxnet-0"' in stdout
    assert "elastic IP" in stdout
    assert not machine_exists(str(tmp_path), "docker-host")


def test_create_dry_run_custom_network(run_cli, tmp_path):
    rc, stdout, _ = run_cli(
        "create", "docker-host",
        "--storage-path", str(tmp_path),
        "--qingcloud-vxnet-id", "vxnet-custom",
        "--dry-run",
        env=_NO_CREDENTIALS,
    )
    assert rc == 0
    assert '"vxnets.1": "vxnet-custom"' in stdout
    assert "elastic IP" not in stdout


def test_create_dry_run_vxnet_from_env(run_cli, tmp_path):
    rc, stdout, _ = run_cli(
        "create", "docker-host", "--storage-path", str(tmp_path), "--dry-run",
        env={**_NO_CREDENTIALS, "QINGCLOUD_VXNET_ID": "vxnet-env"},
    )
    assert rc == 0
    assert '"vxnets.1": "vxnet-env"' in stdout


def test_create_dry_run_existing_keypair(run_cli, tmp_path):
    rc, stdout, _ = run_cli(
        "create", "docker-host",
        "--storage-path", str(tmp_path),
        "--qingcloud-login-keypair", "kp-existing",
        "--qingcloud-ssh-keypath", str(tmp_path / "id_rsa"),
        "--dry-run",
        env=_NO_CREDENTIALS,
    )
    assert rc == 0
    assert "Would check that key pair [kp-existing] exists" in stdout
    assert '"login_keypair": "kp-existing"' in stdout
    assert "CreateKeyPair" not in stdout


def test_create_keypair_without_keypath_fails(run_cli, tmp_path):
    rc, stdout, _ = run_cli(
        "create", "docker-host",
        "--storage-path", str(tmp_path),
        "--qingcloud-login-keypair", "kp-existing",
        "--dry-run",
        env={**_NO_CREDENTIALS, "QINGCLOUD_SSH_KEYPATH": ""},
    )
    assert rc == 1
    assert "--qingcloud-ssh-keypath" in stdout


def test_create_without_credentials_fails(run_cli, tmp_path):
    rc, stdout, _ = run_cli("create", "docker-host", "--storage-path", str(tmp_path), env=_NO_CREDENTIALS)
    assert rc == 1
    assert "credentials required" in stdout


def test_create_existing_machine_fails(run_cli, tmp_path):
    save_state(str(tmp_path), DriverState(machine_name="docker-host"))
    rc, stdout, _ = run_cli(
        "create", "docker-host",
        "--storage-path", str(tmp_path),
        "--qingcloud-access-key-id", "AKID",
        "--qingcloud-secret-access-key", "secret-access-key",
        env=_NO_CREDENTIALS,
    )
    assert rc == 1
    assert "already exists" in stdout


# ── Create failures ───────────────────────────────────────────────


def _create_args(tmp_path, *extra):
    parser = argparse.ArgumentParser()
    register_create_command(parser.add_subparsers(dest="command"))
    return parser.parse_args(
        [
            "create", "docker-host",
            "--storage-path", str(tmp_path),
            "--qingcloud-access-key-id", "AKID",
            "--qingcloud-secret-access-key", "secret",
            "--skip-os-check",
            *extra,
        ]
    )


def test_create_missing_keypair_saves_nothing(tmp_path):
    args = _create_args(
        tmp_path, "--qingcloud-login-keypair", "kp-missing", "--qingcloud-ssh-keypath", str(tmp_path / "id_rsa")
    )
    missing = NotFoundError("DescribeKeyPairs", "kp-missing does not exist")

    with patch.object(Driver, "pre_create_check", new_callable=AsyncMock, side_effect=missing):
        with pytest.raises(SystemExit):
            args.func(args)

    assert not machine_exists(str(tmp_path), "docker-host")


def test_create_saves_registered_keypair_after_failure(tmp_path):
    args = _create_args(tmp_path)

    async def _fail_after_keypair(driver):
        driver.state.login_keypair = "kp-new"
        driver.state.owns_keypair = True
        raise APIError("RunInstances", "quota exceeded", code=2500)

    with (
        patch.object(Driver, "pre_create_check", new_callable=AsyncMock),
        patch.object(Driver, "create", _fail_after_keypair),
        pytest.raises(SystemExit),
    ):
        args.func(args)

    state = load_state(str(tmp_path), "docker-host")
    assert state.login_keypair == "kp-new"
    assert state.owns_keypair
    assert state.instance_id == ""


# ── Read-only commands ────────────────────────────────────────────


def test_ip_and_url(run_cli, tmp_path):
    save_state(str(tmp_path), DriverState(machine_name="docker-host", instance_id="i-1", ip_address="1.2.3.4"))

    rc, stdout, _ = run_cli("ip", "docker-host", "--storage-path", str(tmp_path))
    assert rc == 0
    assert stdout.strip() == "1.2.3.4"

    rc, stdout, _ = run_cli("url", "docker-host", "--storage-path", str(tmp_path))
    assert rc == 0
    assert stdout.strip() == "tcp://1.2.3.4:2376"


def test_ip_unset(run_cli, tmp_path):
    save_state(str(tmp_path), DriverState(machine_name="docker-host"))
    rc, stdout, _ = run_cli("ip", "docker-host", "--storage-path", str(tmp_path))
    assert rc == 1
    assert "IP address is not set" in stdout


def test_status_without_instance(run_cli, tmp_path):
    save_state(str(tmp_path), DriverState(machine_name="docker-host"))
    rc, stdout, _ = run_cli("status", "docker-host", "--storage-path", str(tmp_path))
    assert rc == 0
    assert stdout.strip() == "None"


def test_unknown_machine(run_cli, tmp_path):
    rc, stdout, _ = run_cli("status", "ghost", "--storage-path", str(tmp_path))
    assert rc == 1
    assert "does not exist" in stdout


def test_rm_without_instance_removes_store(run_cli, tmp_path):
    save_state(str(tmp_path), DriverState(machine_name="docker-host"))
    rc, stdout, _ = run_cli("rm", "docker-host", "--storage-path", str(tmp_path))
    assert rc == 0
    assert "nothing to remove" in stdout
    assert not machine_exists(str(tmp_path), "docker-host")
