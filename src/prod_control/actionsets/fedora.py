from __future__ import annotations

from ..transports import Transport
from ..types import ActionOutcome, AddPackageRepo, DisableSwap, InstallPackages, RemovePackages
from .base import Handler
from .linux import LinuxActionSet
from .packages import check_packages

DNF = ["dnf", "-y"]


class FedoraActionSet(LinuxActionSet):
    """Fedora, RHEL and derivatives: dnf, ufw enabled before rules."""

    name = "linux_fedora"
    FIREWALL_ENABLE_FIRST = True
    UNSUPPORTED = (AddPackageRepo, DisableSwap)

    def handlers(self) -> dict[type, Handler]:
        handlers = {
            **super().handlers(),
            InstallPackages: self.install_packages,
            RemovePackages: self.remove_packages,
        }
        for action_cls in self.UNSUPPORTED:
            handlers.pop(action_cls, None)
        return handlers

    def install_packages(self, action: InstallPackages, transport: Transport) -> ActionOutcome:
        check_packages(action)
        if action.update:
            self.run(transport, [*DNF, "update"])
        self.run(transport, [*DNF, "install", *action.packages])
        return ActionOutcome.success(action, f"installed={','.join(action.packages)}")

    def remove_packages(self, action: RemovePackages, transport: Transport) -> ActionOutcome:
        check_packages(action)
        self.run(transport, [*DNF, "remove", *action.packages])
        return ActionOutcome.success(action, f"removed={','.join(action.packages)}")
