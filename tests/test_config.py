from pathlib import Path

import pytest

from prod_control.config import ControlConfig, load_config


def test_load_config_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "missing.conf")
    assert isinstance(config, ControlConfig)
    assert config.transport == "paramiko"
    assert config.escalation == "auto"
    assert config.command_timeout is None


def test_load_config_overrides(tmp_path: Path) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text(
        """
        [defaults]
        transport = "OpenSSH"
        connect_timeout = 5
        command_timeout = 600
        strict_host_keys = true
        known_hosts = "/etc/prod-control/known_hosts"
        escalation = "sudo"
        remote_tmp_dir = "/var/tmp"
        """
    )

    config = load_config(cfg_path)
    assert config.transport == "openssh"
    assert config.connect_timeout == 5.0
    assert config.command_timeout == 600.0
    assert config.strict_host_keys is True
    assert config.known_hosts == Path("/etc/prod-control/known_hosts")
    assert config.escalation == "sudo"
    assert config.remote_tmp_dir == "/var/tmp"


@pytest.mark.parametrize("line", ['transport = "telnet"', 'escalation = "doas"'])
def test_load_config_rejects_unknown_values(tmp_path: Path, line: str) -> None:
    cfg_path = tmp_path / "main.conf"
    cfg_path.write_text(f"[defaults]\n{line}\n")
    with pytest.raises(ValueError):
        load_config(cfg_path)
