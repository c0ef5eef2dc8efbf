from __future__ import annotations

from typing import Optional


class ControlError(Exception):
    """Base class for every error raised by the control engine."""


class ScriptError(ControlError):
    """The control script could not be loaded or is malformed."""


class CredentialError(ControlError):
    """Authentication material could not be resolved."""


class AmbiguousAuthError(CredentialError):
    """Both key and password fields are present and no authType was given."""


class ConnectError(ControlError):
    """Network level failure while opening the session."""

    def __init__(self, message: str, *, reason: str = "other"):
        super().__init__(message)
        self.reason = reason


class AuthError(ControlError):
    """The remote host rejected the supplied credentials."""

    def __init__(self, message: str, *, reason: str = "rejected"):
        super().__init__(message)
        self.reason = reason


class ValidationMismatchError(ControlError):
    """The remote system does not satisfy the script's system validation."""


class UnsupportedActionError(ControlError):
    """The selected action set does not implement the action kind."""


class ActionParamError(ControlError):
    """An action carries missing or malformed parameters."""


class ExecError(ControlError):
    """The remote command channel failed (not a non-zero exit)."""


class TransferError(ControlError):
    """Copying a file to or from the remote host failed."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class UploadError(TransferError):
    pass


class DownloadError(TransferError):
    pass


class CommandFailedError(ControlError):
    """A remote command exited with a non-zero status."""

    def __init__(self, command: str, returncode: int, stderr: str = ""):
        detail = stderr.strip() or "no output"
        super().__init__(f"'{command}' exited with status {returncode}: {detail}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
