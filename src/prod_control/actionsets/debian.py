from __future__ import annotations

import logging

from ..errors import ActionParamError
from ..transports import Transport
from ..types import ActionOutcome, AddPackageRepo, InstallPackages, RemovePackages
from .base import Handler, require
from .linux import LinuxActionSet
from .packages import check_packages

logger = logging.getLogger(__name__)

APT = ["env", "DEBIAN_FRONTEND=noninteractive", "apt-get", "-y"]
KEYRING_DIR = "/usr/share/keyrings"
SOURCES_DIR = "/etc/apt/sources.list.d"


class DebianActionSet(LinuxActionSet):
    """Debian, Ubuntu and derivatives: apt-get, ufw enabled after rules."""

    name = "linux_debian"
    SSH_SERVICE = "ssh"

    def handlers(self) -> dict[type, Handler]:
        return {
            **super().handlers(),
            InstallPackages: self.install_packages,
            RemovePackages: self.remove_packages,
            AddPackageRepo: self.add_package_repo,
        }

    def install_packages(self, action: InstallPackages, transport: Transport) -> ActionOutcome:
        check_packages(action)
        if action.update:
            self.run(transport, [*APT, "update"])
        self.run(transport, [*APT, "install", *action.packages])
        return ActionOutcome.success(action, f"installed={','.join(action.packages)}")

    def remove_packages(self, action: RemovePackages, transport: Transport) -> ActionOutcome:
        check_packages(action)
        self.run(transport, [*APT, "remove", *action.packages])
        return ActionOutcome.success(action, f"removed={','.join(action.packages)}")

    def add_package_repo(self, action: AddPackageRepo, transport: Transport) -> ActionOutcome:
        if action.repo_type != "manualURL":
            raise ActionParamError(f"addPackageRepo: unsupported type '{action.repo_type}'")
        require(action.key_url, "keyURL", action)
        require(action.source_list_url, "sourceListDefURL", action)
        require(action.local_file_prefix, "localFilePrefix", action)

        prefix = action.local_file_prefix
        armored = f"{self.config.remote_tmp_dir.rstrip('/')}/{prefix}.key"
        keyring = f"{KEYRING_DIR}/{prefix}-archive-keyring.gpg"
        sources = f"{SOURCES_DIR}/{prefix}.list"

        self.run(transport, ["wget", "-q", action.key_url, "-O", armored], privileged=False)
        try:
            self.run(transport, ["gpg", "--batch", "--yes", "--dearmor", "-o", keyring, armored])
        finally:
            self.run(transport, ["rm", "-f", armored], check=False, privileged=False)
        self.run(transport, ["wget", "-q", action.source_list_url, "-O", sources])
        self.run(transport, [*APT, "update"])
        logger.debug("added apt repository %s", sources)
        return ActionOutcome.success(action, f"keyring={keyring} sources={sources}")
