from typing import Optional

from ..config import ControlConfig
from ..credentials import CredentialResolver
from ..errors import ScriptError
from .base import ActionSet
from .debian import DebianActionSet
from .fedora import FedoraActionSet
from .linux import LinuxActionSet
from .unix import UnixActionSet

ACTION_SETS = {
    DebianActionSet.name: DebianActionSet,
    FedoraActionSet.name: FedoraActionSet,
}


def create_action_set(
    provider: str,
    config: Optional[ControlConfig] = None,
    *,
    user: str = "root",
    resolver: Optional[CredentialResolver] = None,
) -> ActionSet:
    try:
        action_set_cls = ACTION_SETS[provider]
    except KeyError:
        raise ScriptError(f"unknown provider '{provider}'") from None
    return action_set_cls(config, user=user, resolver=resolver)


__all__ = [
    "ActionSet",
    "UnixActionSet",
    "LinuxActionSet",
    "DebianActionSet",
    "FedoraActionSet",
    "ACTION_SETS",
    "create_action_set",
]
