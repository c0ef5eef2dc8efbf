"""Targeted edits of ``sshd_config`` style files.

Each managed key gets a single fresh ``Key value`` line. Existing active
settings for the key are commented out rather than removed, and the new line
is placed above the last active setting, or above the first commented-out
example when the key is not active anywhere, or at the top of the file.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import re

from .patching import line_ending, split_ending, split_lines

PERMIT_ROOT_LOGIN_VALUES = ("no", "prohibit-password", "yes")


@dataclass(frozen=True)
class SshdSettings:
    password_authentication: Optional[bool] = None
    permit_empty_passwords: Optional[bool] = None
    permit_root_login: Optional[str] = None
    port: Optional[int] = None
    pubkey_authentication: Optional[bool] = None

    def any_set(self) -> bool:
        return any(value is not None for value in self.values().values())

    def check(self) -> None:
        if self.permit_root_login is not None and self.permit_root_login not in PERMIT_ROOT_LOGIN_VALUES:
            raise ValueError(
                f"permitRootLogin must be one of {', '.join(PERMIT_ROOT_LOGIN_VALUES)}"
            )
        if self.port is not None and not 0 < self.port < 65536:
            raise ValueError(f"port {self.port} is out of range")

    def values(self) -> dict[str, Optional[str]]:
        return {
            "PasswordAuthentication": _yes_no(self.password_authentication),
            "PermitEmptyPasswords": _yes_no(self.permit_empty_passwords),
            "PermitRootLogin": self.permit_root_login,
            "Port": str(self.port) if self.port is not None else None,
            "PubkeyAuthentication": _yes_no(self.pubkey_authentication),
        }


def _yes_no(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return "yes" if value else "no"


def set_value(lines: list[str], key: str, value: str, *, newline: str = "") -> None:
    """Set ``key`` in ``lines``, which may carry their own line terminators."""

    pattern = re.compile(rf"^\s*(#\s*)?{re.escape(key)}(\s|$)")
    insert_at: Optional[int] = None
    for idx, line in enumerate(lines):
        found = pattern.match(split_ending(line)[0])
        if not found:
            continue
        if found.group(1):
            if insert_at is None:
                insert_at = idx
            continue
        lines[idx] = f"#{line}"
        insert_at = idx
    at = insert_at if insert_at is not None else 0
    ending = split_ending(lines[at])[1] if at < len(lines) else ""
    lines.insert(at, f"{key} {value}" + (ending or newline or line_ending(lines)))


def modify(text: str, settings: SshdSettings) -> str:
    lines = split_lines(text)
    newline = line_ending(lines) or "\n"
    for key, value in settings.values().items():
        if value is not None:
            set_value(lines, key, value, newline=newline)
    return "".join(lines)
