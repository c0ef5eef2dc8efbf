from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, Union
import logging
import os
import shlex
import tempfile
import uuid

from ..config import ControlConfig
from ..credentials import CredentialResolver
from ..errors import (
    ActionParamError,
    CommandFailedError,
    ControlError,
    CredentialError,
    UnsupportedActionError,
)
from ..transports import CommandResult, Transport
from ..types import PROMPT_SENTINEL, Action, ActionOutcome

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Transport], ActionOutcome]
Command = Union[str, Sequence[str]]


@dataclass
class FileStat:
    mode: str
    owner: str
    group: str


class ActionSet:
    """Translates actions into remote commands for one platform family.

    Subclasses extend :meth:`handlers` with the actions they implement and
    list the ones they refuse in ``UNSUPPORTED``. Every action class must land
    in exactly one of the two.
    """

    name = "base"
    UNSUPPORTED: tuple[type[Action], ...] = ()

    def __init__(
        self,
        config: Optional[ControlConfig] = None,
        *,
        user: str = "root",
        resolver: Optional[CredentialResolver] = None,
    ):
        self.config = config or ControlConfig()
        self.user = user
        self.resolver = resolver
        self._handlers = self.handlers()

    def handlers(self) -> dict[type[Action], Handler]:
        return {}

    def supports(self, action_cls: type[Action]) -> bool:
        return action_cls in self._handlers

    @property
    def escalate(self) -> bool:
        if self.config.escalation == "none":
            return False
        if self.config.escalation == "sudo":
            return True
        return self.user != "root"

    def execute(self, action: Action, transport: Transport) -> ActionOutcome:
        """Run ``action`` and report its outcome; control errors never escape."""

        handler = self._handlers.get(type(action))
        try:
            if handler is None:
                raise UnsupportedActionError(f"{self.name} does not support {action.kind}")
            return handler(action, transport)
        except ControlError as exc:
            logger.debug("action=%s failed: %s", action.kind, exc)
            return ActionOutcome.failure(action, str(exc))

    # Remote command helpers ---------------------------------------------
    def run(
        self,
        transport: Transport,
        command: Command,
        *,
        check: bool = True,
        display: Optional[str] = None,
        privileged: bool = True,
    ) -> CommandResult:
        """Run ``command`` remotely, escalating with sudo when required.

        ``display`` replaces the command text in logs and error messages so
        secrets carried on the command line are never echoed.
        """

        text = command if isinstance(command, str) else shlex.join(command)
        shown = display or text
        if privileged and self.escalate:
            text = f"sudo -n sh -c {shlex.quote(text)}"
        logger.debug("exec %s", shown)
        result = transport.run(text)
        if check and result.returncode != 0:
            raise CommandFailedError(shown, result.returncode, result.stderr)
        return result

    def put_file(self, transport: Transport, local_path: Path, remote_path: str) -> None:
        """Upload a file, staging it in the remote tmp dir when escalating."""

        if not self.escalate:
            transport.upload(local_path, remote_path)
            return
        staging = f"{self.config.remote_tmp_dir.rstrip('/')}/prod-control-{uuid.uuid4().hex}"
        transport.upload(local_path, staging)
        try:
            self.run(transport, ["mv", staging, remote_path])
        except ControlError:
            self.run(transport, ["rm", "-f", staging], check=False, privileged=False)
            raise

    def write_text(self, transport: Transport, remote_path: str, content: str) -> None:
        fd, scratch = tempfile.mkstemp(prefix="prod-control-")
        os.fchmod(fd, 0o644)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
                handle.write(content)
            self.put_file(transport, Path(scratch), remote_path)
        finally:
            os.unlink(scratch)

    def read_text(self, transport: Transport, remote_path: str) -> str:
        fd, scratch = tempfile.mkstemp(prefix="prod-control-")
        os.close(fd)
        try:
            transport.download(remote_path, scratch)
            with open(scratch, encoding="utf-8", errors="surrogateescape", newline="") as handle:
                return handle.read()
        finally:
            os.unlink(scratch)

    def stat(self, transport: Transport, path: str) -> FileStat:
        result = self.run(transport, ["stat", "-c", "%a %U %G", path])
        fields = result.stdout.split()
        if len(fields) != 3:
            raise CommandFailedError(f"stat {path}", result.returncode, f"unexpected output {result.stdout!r}")
        return FileStat(*fields)

    def set_attributes(
        self,
        transport: Transport,
        path: str,
        *,
        permissions: Optional[str] = None,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> None:
        if permissions:
            self.run(transport, ["chmod", permissions, path])
        if owner:
            self.run(transport, ["chown", owner, path])
        if group:
            self.run(transport, ["chgrp", group, path])

    def resolve_secret(self, raw: Optional[str], prompt: str) -> Optional[str]:
        if self.resolver is not None:
            return self.resolver.resolve_value(raw, prompt, secret=True)
        if raw == PROMPT_SENTINEL:
            raise CredentialError(f"cannot prompt for {prompt.strip()!r} without a credential resolver")
        return raw


def require(value: Any, name: str, action: Action) -> None:
    if value is None or value == "" or value == ():
        raise ActionParamError(f"{action.kind}: the '{name}' parameter was not specified")


def check_mode(permissions: Optional[str], action: Action) -> None:
    if permissions is None:
        return
    try:
        int(permissions, 8)
    except ValueError:
        raise ActionParamError(f"{action.kind}: invalid permissions '{permissions}'") from None
