from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Optional, Union

PROMPT_SENTINEL = "$PROMPT"


class MatchType(str, Enum):
    STARTS_WITH = "startsWith"
    CONTAINS = "contains"
    EXACT = "exact"
    ENDS_WITH = "endsWith"


class InsertPosition(str, Enum):
    ABOVE = "above"
    BELOW = "below"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


# Directives -----------------------------------------------------------------


@dataclass(frozen=True)
class InsertLine:
    match_string: str
    insert_string: str
    position: InsertPosition = InsertPosition.BELOW
    match_type: MatchType = MatchType.CONTAINS
    once_only: bool = False
    report_failure: bool = False

    kind: ClassVar[str] = "insertLine"


@dataclass(frozen=True)
class ReplaceLine:
    match_string: str
    replace_string: str
    match_type: MatchType = MatchType.CONTAINS
    once_only: bool = False
    report_failure: bool = False

    kind: ClassVar[str] = "replaceLine"


@dataclass(frozen=True)
class CommentLine:
    match_string: str
    comment_char: str = "#"
    match_type: MatchType = MatchType.CONTAINS
    once_only: bool = False
    report_failure: bool = False

    kind: ClassVar[str] = "commentLine"


Directive = Union[InsertLine, ReplaceLine, CommentLine]


@dataclass
class DirectiveOutcome:
    directive: Directive
    status: OutcomeStatus
    matches: int = 0
    details: str = ""


# Actions --------------------------------------------------------------------


@dataclass(frozen=True)
class Action:
    """Common base of every control action."""

    kind: ClassVar[str] = ""

    @property
    def resource(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class AddUser(Action):
    username: str = ""
    password: Optional[str] = None
    create_home: bool = True
    shell: str = "/bin/bash"
    groups: tuple[str, ...] = ()
    ignore_failure: bool = False

    kind: ClassVar[str] = "addUser"

    @property
    def resource(self) -> Optional[str]:
        return self.username or None


@dataclass(frozen=True)
class AddGroup(Action):
    name: str = ""
    system: bool = False
    gid: Optional[int] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "addGroup"

    @property
    def resource(self) -> Optional[str]:
        return self.name or None


@dataclass(frozen=True)
class InstallPackages(Action):
    packages: tuple[str, ...] = ()
    update: bool = True
    ignore_failure: bool = False

    kind: ClassVar[str] = "installPackages"

    @property
    def resource(self) -> Optional[str]:
        return _package_label(self.packages)


@dataclass(frozen=True)
class RemovePackages(Action):
    packages: tuple[str, ...] = ()
    ignore_failure: bool = False

    kind: ClassVar[str] = "removePackages"

    @property
    def resource(self) -> Optional[str]:
        return _package_label(self.packages)


@dataclass(frozen=True)
class AddPackageRepo(Action):
    repo_type: str = "manualURL"
    key_url: str = ""
    source_list_url: str = ""
    local_file_prefix: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "addPackageRepo"

    @property
    def resource(self) -> Optional[str]:
        return self.local_file_prefix or None


@dataclass(frozen=True)
class CopyPath(Action):
    source_path: str = ""
    dest_path: str = ""
    recursive: bool = False
    update: bool = False
    ignore_failure: bool = False

    kind: ClassVar[str] = "copyPath"

    @property
    def resource(self) -> Optional[str]:
        return self.dest_path or None


@dataclass(frozen=True)
class CreateDirectory(Action):
    path: str = ""
    multi_level: bool = False
    permissions: Optional[str] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "createDirectory"

    @property
    def resource(self) -> Optional[str]:
        return self.path or None


@dataclass(frozen=True)
class CreateFile(Action):
    path: str = ""
    content: str = ""
    permissions: Optional[str] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "createFile"

    @property
    def resource(self) -> Optional[str]:
        return self.path or None


@dataclass(frozen=True)
class CreateSymlink(Action):
    target_path: str = ""
    link_path: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "createSymlink"

    @property
    def resource(self) -> Optional[str]:
        return self.link_path or None


@dataclass(frozen=True)
class RemoveFile(Action):
    path: str = ""
    recursive: bool = False
    ignore_failure: bool = False

    kind: ClassVar[str] = "removeFile"

    @property
    def resource(self) -> Optional[str]:
        return self.path or None


@dataclass(frozen=True)
class DisableSwap(Action):
    filename: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "disableSwap"

    @property
    def resource(self) -> Optional[str]:
        return self.filename or None


@dataclass(frozen=True)
class EditFile(Action):
    filepath: str = ""
    directives: tuple[Directive, ...] = ()
    backup: bool = False
    ignore_failure: bool = False

    kind: ClassVar[str] = "editFile"

    @property
    def resource(self) -> Optional[str]:
        return self.filepath or None


@dataclass(frozen=True)
class SystemCtl(Action):
    service: str = ""
    action: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "systemCtl"

    @property
    def resource(self) -> Optional[str]:
        return self.service or None


@dataclass(frozen=True)
class Firewall(Action):
    firewall_type: str = "ufw"
    rules: tuple[str, ...] = ()
    enabled: Optional[bool] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "firewall"

    @property
    def resource(self) -> Optional[str]:
        return self.firewall_type or None


@dataclass(frozen=True)
class SetTimeZone(Action):
    time_zone: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "setTimeZone"

    @property
    def resource(self) -> Optional[str]:
        return self.time_zone or None


@dataclass(frozen=True)
class GenericCommand(Action):
    command: str = ""
    ignore_failure: bool = False

    kind: ClassVar[str] = "genericCommand"


@dataclass(frozen=True)
class TransmitFile(Action):
    local_source_path: str = ""
    remote_dest_path: str = ""
    permissions: Optional[str] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    extract_dir: Optional[str] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "transmitFile"

    @property
    def resource(self) -> Optional[str]:
        return self.remote_dest_path or None


@dataclass(frozen=True)
class DownloadFile(Action):
    source_url: str = ""
    dest_path: str = ""
    permissions: Optional[str] = None
    owner: Optional[str] = None
    group: Optional[str] = None
    extract_dir: Optional[str] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "downloadFile"

    @property
    def resource(self) -> Optional[str]:
        return self.dest_path or None


@dataclass(frozen=True)
class ConfigureSshd(Action):
    password_authentication: Optional[bool] = None
    permit_empty_passwords: Optional[bool] = None
    permit_root_login: Optional[str] = None
    port: Optional[int] = None
    pubkey_authentication: Optional[bool] = None
    ignore_failure: bool = False

    kind: ClassVar[str] = "configureSshd"


ACTION_KINDS: dict[str, type[Action]] = {
    cls.kind: cls
    for cls in (
        AddUser,
        AddGroup,
        InstallPackages,
        RemovePackages,
        AddPackageRepo,
        CopyPath,
        CreateDirectory,
        CreateFile,
        CreateSymlink,
        RemoveFile,
        DisableSwap,
        EditFile,
        SystemCtl,
        Firewall,
        SetTimeZone,
        GenericCommand,
        TransmitFile,
        DownloadFile,
        ConfigureSshd,
    )
}


def _package_label(packages: tuple[str, ...]) -> Optional[str]:
    if not packages:
        return None
    rendered = ", ".join(packages[:3])
    if len(packages) > 3:
        rendered += ", ..."
    return rendered


# Script and results ---------------------------------------------------------


@dataclass(frozen=True)
class ControlScript:
    provider: str
    host: str = PROMPT_SENTINEL
    port: int = 22
    user: str = PROMPT_SENTINEL
    auth_type: Optional[str] = None
    password: Optional[str] = None
    public_key_path: Optional[str] = None
    private_key_path: Optional[str] = None
    key_passphrase: Optional[str] = None
    system_validation: Optional[str] = None
    actions: tuple[Action, ...] = ()


@dataclass
class ActionOutcome:
    action: str
    status: OutcomeStatus
    details: str = ""
    resource: Optional[str] = None
    directives: list[DirectiveOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    @classmethod
    def success(cls, action: Action, details: str = "ok") -> "ActionOutcome":
        return cls(action.kind, OutcomeStatus.SUCCESS, details, action.resource)

    @classmethod
    def failure(cls, action: Action, details: str) -> "ActionOutcome":
        return cls(action.kind, OutcomeStatus.FAILED, details, action.resource)

    @classmethod
    def skipped(cls, action: Action, details: str) -> "ActionOutcome":
        return cls(action.kind, OutcomeStatus.SKIPPED, details, action.resource)


@dataclass
class RunResult:
    outcomes: list[ActionOutcome] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.aborted and not any(o.failed for o in self.outcomes)
