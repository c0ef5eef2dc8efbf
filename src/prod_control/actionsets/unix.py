from __future__ import annotations

from pathlib import Path
import logging
import os
import tempfile

from ..errors import ActionParamError, CommandFailedError
from ..patching import patch_text
from ..transports import Transport
from ..types import (
    ActionOutcome,
    CopyPath,
    CreateDirectory,
    CreateFile,
    CreateSymlink,
    DownloadFile,
    EditFile,
    GenericCommand,
    OutcomeStatus,
    RemoveFile,
    TransmitFile,
)
from .base import ActionSet, FileStat, Handler, check_mode, require

logger = logging.getLogger(__name__)


class UnixActionSet(ActionSet):
    """File, path and command actions common to every Unix-like target."""

    name = "unix"

    def handlers(self) -> dict[type, Handler]:
        return {
            **super().handlers(),
            GenericCommand: self.generic_command,
            CreateDirectory: self.create_directory,
            CreateFile: self.create_file,
            CreateSymlink: self.create_symlink,
            RemoveFile: self.remove_file,
            CopyPath: self.copy_path,
            EditFile: self.edit_file,
            TransmitFile: self.transmit_file,
            DownloadFile: self.download_file,
        }

    def generic_command(self, action: GenericCommand, transport: Transport) -> ActionOutcome:
        require(action.command, "command", action)
        result = self.run(transport, action.command)
        return ActionOutcome.success(action, result.stdout.strip() or "ok")

    def create_directory(self, action: CreateDirectory, transport: Transport) -> ActionOutcome:
        require(action.path, "path", action)
        check_mode(action.permissions, action)
        command = ["mkdir", "-p", action.path] if action.multi_level else ["mkdir", action.path]
        self.run(transport, command)
        self.set_attributes(
            transport,
            action.path,
            permissions=action.permissions,
            owner=action.owner,
            group=action.group,
        )
        return ActionOutcome.success(action, "created")

    def create_file(self, action: CreateFile, transport: Transport) -> ActionOutcome:
        require(action.path, "path", action)
        check_mode(action.permissions, action)
        self.write_text(transport, action.path, action.content)
        self.set_attributes(
            transport,
            action.path,
            permissions=action.permissions,
            owner=action.owner,
            group=action.group,
        )
        return ActionOutcome.success(action, f"wrote {len(action.content)} bytes")

    def create_symlink(self, action: CreateSymlink, transport: Transport) -> ActionOutcome:
        require(action.target_path, "targetPath", action)
        require(action.link_path, "linkPath", action)
        self.run(transport, ["ln", "-s", action.target_path, action.link_path])
        return ActionOutcome.success(action, f"-> {action.target_path}")

    def remove_file(self, action: RemoveFile, transport: Transport) -> ActionOutcome:
        require(action.path, "path", action)
        if action.path.rstrip("/") == "":
            raise ActionParamError("removeFile: refusing to remove '/'")
        command = ["rm", "-r", action.path] if action.recursive else ["rm", action.path]
        self.run(transport, command)
        return ActionOutcome.success(action, "removed")

    def copy_path(self, action: CopyPath, transport: Transport) -> ActionOutcome:
        require(action.source_path, "sourcePath", action)
        require(action.dest_path, "destPath", action)
        command = ["cp"]
        if action.recursive:
            command.append("-R")
        if action.update:
            command.append("-u")
        self.run(transport, [*command, action.source_path, action.dest_path])
        return ActionOutcome.success(action, f"copied from {action.source_path}")

    def edit_file(self, action: EditFile, transport: Transport) -> ActionOutcome:
        require(action.filepath, "filepath", action)
        if not action.directives:
            raise ActionParamError("editFile: no insertLine, replaceLine or commentLine directives given")

        path = action.filepath
        if action.backup:
            self.run(transport, ["cp", "-p", path, f"{path}.bak"])
        info = self.stat(transport, path)

        fd, scratch = tempfile.mkstemp(prefix="prod-control-edit-")
        os.close(fd)
        try:
            transport.download(path, scratch)
            with open(scratch, encoding="utf-8", errors="surrogateescape", newline="") as handle:
                original = handle.read()
            result = patch_text(original, action.directives)
            if result.changed:
                with open(scratch, "w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
                    handle.write(result.text)
                self.put_file(transport, Path(scratch), path)
                self.restore_attributes(transport, path, info)
        finally:
            os.unlink(scratch)

        logger.debug("editFile path=%s changed=%s", path, result.changed)
        failures = [o for o in result.outcomes if o.status is OutcomeStatus.FAILED]
        if failures:
            missed = ", ".join(repr(o.directive.match_string) for o in failures)
            outcome = ActionOutcome.failure(action, f"no line matched {missed}")
        else:
            outcome = ActionOutcome.success(action, "modified" if result.changed else "unchanged")
        outcome.directives = result.outcomes
        return outcome

    def restore_attributes(self, transport: Transport, path: str, info: FileStat) -> None:
        self.run(transport, ["chmod", info.mode, path])
        if self.escalate or self.user == "root":
            self.run(transport, ["chown", f"{info.owner}:{info.group}", path])

    def transmit_file(self, action: TransmitFile, transport: Transport) -> ActionOutcome:
        require(action.local_source_path, "localSourcePath", action)
        require(action.remote_dest_path, "remoteDestPath", action)
        check_mode(action.permissions, action)
        source = Path(action.local_source_path).expanduser()
        if not source.is_file():
            raise ActionParamError(f"transmitFile: local file {source} does not exist")
        self.put_file(transport, source, action.remote_dest_path)
        self.set_attributes(
            transport,
            action.remote_dest_path,
            permissions=action.permissions,
            owner=action.owner,
            group=action.group,
        )
        if action.extract_dir:
            self.extract(transport, action.remote_dest_path, action.extract_dir)
        return ActionOutcome.success(action, f"sent {source}")

    def download_file(self, action: DownloadFile, transport: Transport) -> ActionOutcome:
        require(action.source_url, "sourceURL", action)
        require(action.dest_path, "destPath", action)
        check_mode(action.permissions, action)
        self.run(transport, ["wget", "-q", action.source_url, "-O", action.dest_path])
        self.set_attributes(
            transport,
            action.dest_path,
            permissions=action.permissions,
            owner=action.owner,
            group=action.group,
        )
        if action.extract_dir:
            self.extract(transport, action.dest_path, action.extract_dir)
        return ActionOutcome.success(action, f"fetched {action.source_url}")

    def extract(self, transport: Transport, archive: str, extract_dir: str) -> None:
        probe = self.run(transport, ["test", "-d", extract_dir], check=False)
        if probe.returncode != 0:
            raise CommandFailedError(
                f"test -d {extract_dir}", probe.returncode, "extractDir does not exist"
            )
        self.run(transport, ["tar", "-xf", archive, "-C", extract_dir])
