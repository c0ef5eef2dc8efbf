from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


DEFAULT_CONFIG = Path("/etc/prod-control/main.conf")
TRANSPORTS = {"paramiko", "openssh"}
ESCALATION_MODES = {"auto", "sudo", "none"}


@dataclass
class ControlConfig:
    transport: str = "paramiko"
    connect_timeout: float = 20.0
    command_timeout: Optional[float] = None
    strict_host_keys: bool = False
    known_hosts: Optional[Path] = None
    escalation: str = "auto"
    remote_tmp_dir: str = "/tmp"


def load_config(path: Path) -> ControlConfig:
    if not path.exists():
        return ControlConfig()
    data = tomllib.loads(path.read_text())
    defaults = data.get("defaults", {})
    transport = str(defaults.get("transport", "paramiko")).lower()
    if transport not in TRANSPORTS:
        raise ValueError(f"{path}: unknown transport '{transport}'")
    escalation = str(defaults.get("escalation", "auto")).lower()
    if escalation not in ESCALATION_MODES:
        raise ValueError(f"{path}: escalation must be one of {', '.join(sorted(ESCALATION_MODES))}")
    command_timeout = defaults.get("command_timeout")
    known_hosts = defaults.get("known_hosts")
    return ControlConfig(
        transport=transport,
        connect_timeout=float(defaults.get("connect_timeout", 20.0)),
        command_timeout=float(command_timeout) if command_timeout else None,
        strict_host_keys=bool(defaults.get("strict_host_keys", False)),
        known_hosts=Path(known_hosts).expanduser() if known_hosts else None,
        escalation=escalation,
        remote_tmp_dir=str(defaults.get("remote_tmp_dir", "/tmp")),
    )
