from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging
import operator
import shlex

from .errors import ScriptError, ValidationMismatchError
from .transports import Transport

logger = logging.getLogger(__name__)

OS_RELEASE = "/etc/os-release"

_OPERATORS = {
    "=": operator.eq,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


def parse_version(value: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in value.strip().split("."))
    except ValueError:
        raise ValueError(f"invalid release version '{value}'") from None


def compare_versions(actual: str, op: str, expected: str) -> bool:
    """Compare dotted numeric versions component-wise, padding with zeros."""

    left, right = parse_version(actual), parse_version(expected)
    width = max(len(left), len(right))
    left += (0,) * (width - len(left))
    right += (0,) * (width - len(right))
    return _OPERATORS[op](left, right)


@dataclass(frozen=True)
class SystemValidation:
    distro_id: Optional[str] = None
    comparison: Optional[str] = None
    release: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "SystemValidation":
        """Parse ``Debian``, ``>=12``, ``20.04`` or a ``(Debian, >=12)`` pair."""

        value = text.strip()
        if value.startswith("("):
            if not value.endswith(")"):
                raise ScriptError(f"invalid systemValidation '{text}': missing closing parenthesis")
            value = value[1:-1].strip()
        if not value:
            raise ScriptError("invalid systemValidation: empty value")

        distro_id: Optional[str] = None
        op: Optional[str] = None
        release: Optional[str] = None
        for part in value.split(",", 1):
            part = part.strip()
            first_digit = next((idx for idx, ch in enumerate(part) if ch.isdigit()), None)
            if first_digit is None:
                if not any(ch.isalpha() for ch in part):
                    raise ScriptError(f"invalid systemValidation value '{part}'")
                distro_id = part
                continue
            prefix, number = part[:first_digit].strip(), part[first_digit:].strip()
            prefix = prefix or "="
            if prefix not in _OPERATORS:
                raise ScriptError(f"unsupported systemValidation operator '{prefix}'")
            try:
                parse_version(number)
            except ValueError as exc:
                raise ScriptError(f"invalid systemValidation value '{part}': {exc}") from exc
            op, release = prefix, number
        return cls(distro_id=distro_id, comparison=op, release=release)

    @property
    def needs_checking(self) -> bool:
        return self.distro_id is not None or self.release is not None

    def matches(self, distro_id: str, version: str) -> bool:
        if self.distro_id is not None and self.distro_id.lower() != distro_id.lower():
            return False
        if self.release is None:
            return True
        try:
            return compare_versions(version, self.comparison or "=", self.release)
        except ValueError:
            logger.warning("cannot compare host release '%s' against %s", version, self)
            return False

    def __str__(self) -> str:
        parts = []
        if self.distro_id:
            parts.append(self.distro_id)
        if self.release:
            parts.append(f"{self.comparison}{self.release}")
        return ", ".join(parts)


def parse_os_release(text: str) -> dict[str, str]:
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw = line.split("=", 1)
        try:
            parsed = shlex.split(raw)
        except ValueError:
            parsed = [raw]
        values[key.strip()] = parsed[0] if parsed else ""
    return values


def query_os_release(transport: Transport) -> tuple[str, str]:
    """Return the remote ``(ID, VERSION_ID)`` pair from ``/etc/os-release``."""

    result = transport.run(f"cat {OS_RELEASE}")
    if result.returncode != 0:
        raise ValidationMismatchError(f"cannot read {OS_RELEASE}: {result.stderr.strip()}")
    values = parse_os_release(result.stdout)
    return values.get("ID", ""), values.get("VERSION_ID", "")


def validate(transport: Transport, constraint: SystemValidation) -> None:
    if not constraint.needs_checking:
        return
    distro_id, version = query_os_release(transport)
    logger.debug("remote system id=%s version=%s constraint=%s", distro_id, version, constraint)
    if not constraint.matches(distro_id, version):
        raise ValidationMismatchError(
            f"remote system {distro_id} {version} does not satisfy '{constraint}'"
        )
