from __future__ import annotations

import logging
import re
import shlex

from ..errors import ActionParamError, CommandFailedError
from ..patching import patch_text
from ..sshd_config import SshdSettings, modify
from ..transports import Transport
from ..types import (
    ActionOutcome,
    AddGroup,
    AddUser,
    CommentLine,
    ConfigureSshd,
    DisableSwap,
    Firewall,
    MatchType,
    SetTimeZone,
    SystemCtl,
)
from .base import Handler, require
from .unix import UnixActionSet

logger = logging.getLogger(__name__)

FSTAB = "/etc/fstab"
SSHD_CONFIG = "/etc/ssh/sshd_config"
SYSTEMCTL_ACTIONS = {
    "start",
    "stop",
    "restart",
    "reload",
    "enable",
    "disable",
    "mask",
    "unmask",
    "try-restart",
    "reload-or-restart",
}
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.-]*\$?$")


class LinuxActionSet(UnixActionSet):
    """Actions for systemd based Linux distributions."""

    name = "linux"
    FIREWALL_ENABLE_FIRST = False
    SSH_SERVICE = "sshd"

    def handlers(self) -> dict[type, Handler]:
        return {
            **super().handlers(),
            AddUser: self.add_user,
            AddGroup: self.add_group,
            SystemCtl: self.systemctl,
            Firewall: self.firewall,
            SetTimeZone: self.set_time_zone,
            DisableSwap: self.disable_swap,
            ConfigureSshd: self.configure_sshd,
        }

    def add_user(self, action: AddUser, transport: Transport) -> ActionOutcome:
        require(action.username, "username", action)
        for name in (action.username, *action.groups):
            _check_name(name, action)
        password = self.resolve_secret(action.password, f"Enter password for new user '{action.username}': ")

        self.run(
            transport,
            [
                "useradd",
                "-m" if action.create_home else "-M",
                "-s",
                action.shell,
                action.username,
            ],
        )
        if password:
            entry = shlex.quote(f"{action.username}:{password}")
            self.run(
                transport,
                f"printf '%s\\n' {entry} | chpasswd",
                display=f"printf '%s\\n' '{action.username}:********' | chpasswd",
            )
        for group in action.groups:
            self.run(transport, ["usermod", "-aG", group, action.username])
        detail = f"groups={','.join(action.groups)}" if action.groups else "created"
        return ActionOutcome.success(action, detail)

    def add_group(self, action: AddGroup, transport: Transport) -> ActionOutcome:
        require(action.name, "name", action)
        _check_name(action.name, action)
        command = ["groupadd"]
        if action.system:
            command.append("-r")
        if action.gid is not None:
            command += ["-g", str(action.gid)]
        self.run(transport, [*command, action.name])
        return ActionOutcome.success(action, "created")

    def systemctl(self, action: SystemCtl, transport: Transport) -> ActionOutcome:
        require(action.service, "service", action)
        require(action.action, "action", action)
        if action.action not in SYSTEMCTL_ACTIONS:
            raise ActionParamError(f"systemCtl: unsupported action '{action.action}'")
        self.run(transport, ["systemctl", action.action, action.service])
        return ActionOutcome.success(action, action.action)

    def firewall(self, action: Firewall, transport: Transport) -> ActionOutcome:
        if action.firewall_type != "ufw":
            raise ActionParamError(f"firewall: unsupported type '{action.firewall_type}'")
        if not action.rules and action.enabled is None:
            raise ActionParamError("firewall: neither rules nor enabled were specified")

        toggle = None
        if action.enabled is not None:
            toggle = ["ufw", "--force", "enable" if action.enabled else "disable"]
        if toggle and self.FIREWALL_ENABLE_FIRST:
            self.run(transport, toggle)
        for rule in action.rules:
            self.run(transport, ["ufw", *shlex.split(rule)])
        if toggle and not self.FIREWALL_ENABLE_FIRST:
            self.run(transport, toggle)
        return ActionOutcome.success(action, f"rules={len(action.rules)}")

    def set_time_zone(self, action: SetTimeZone, transport: Transport) -> ActionOutcome:
        require(action.time_zone, "timeZone", action)
        self.run(transport, ["timedatectl", "set-timezone", action.time_zone])
        return ActionOutcome.success(action, action.time_zone)

    def disable_swap(self, action: DisableSwap, transport: Transport) -> ActionOutcome:
        require(action.filename, "filename", action)
        listing = self.run(transport, ["cat", "/proc/swaps"], privileged=False)
        rows = [line.split() for line in listing.stdout.splitlines()[1:] if line.strip()]
        active = [row[0] for row in rows]
        if not active:
            return ActionOutcome.skipped(action, "no active swap")
        if action.filename not in active:
            raise CommandFailedError(
                "cat /proc/swaps",
                0,
                f"active swap is {', '.join(active)}, not {action.filename}",
            )

        self.run(transport, ["swapoff", "-a"])
        info = self.stat(transport, FSTAB)
        fstab = self.read_text(transport, FSTAB)
        patched = patch_text(fstab, [CommentLine(action.filename, match_type=MatchType.STARTS_WITH)])
        if patched.changed:
            self.write_text(transport, FSTAB, patched.text)
            self.restore_attributes(transport, FSTAB, info)
        self.run(transport, ["rm", action.filename])
        return ActionOutcome.success(action, f"disabled {action.filename}")

    def configure_sshd(self, action: ConfigureSshd, transport: Transport) -> ActionOutcome:
        settings = SshdSettings(
            password_authentication=action.password_authentication,
            permit_empty_passwords=action.permit_empty_passwords,
            permit_root_login=action.permit_root_login,
            port=action.port,
            pubkey_authentication=action.pubkey_authentication,
        )
        if not settings.any_set():
            raise ActionParamError("configureSshd: no settings were specified")
        try:
            settings.check()
        except ValueError as exc:
            raise ActionParamError(f"configureSshd: {exc}") from exc

        info = self.stat(transport, SSHD_CONFIG)
        current = self.read_text(transport, SSHD_CONFIG)
        updated = modify(current, settings)
        if updated == current:
            return ActionOutcome.success(action, "unchanged")

        backup = f"{SSHD_CONFIG}.bak"
        self.run(transport, ["cp", "-p", SSHD_CONFIG, backup])
        self.write_text(transport, SSHD_CONFIG, updated)
        self.restore_attributes(transport, SSHD_CONFIG, info)
        check = self.run(transport, ["sshd", "-t"], check=False)
        if check.returncode != 0:
            logger.warning("sshd rejected the new configuration, restoring %s", backup)
            self.run(transport, ["mv", backup, SSHD_CONFIG])
            raise CommandFailedError("sshd -t", check.returncode, check.stderr)
        self.run(transport, ["systemctl", "reload", self.SSH_SERVICE])
        return ActionOutcome.success(action, "modified")


def _check_name(name: str, action) -> None:
    if not _NAME_RE.match(name):
        raise ActionParamError(f"{action.kind}: invalid user or group name '{name}'")
