from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any, Optional, Union, get_args, get_origin, get_type_hints
import logging
import re

import yaml

from .errors import ScriptError
from .types import (
    ACTION_KINDS,
    Action,
    CommentLine,
    ControlScript,
    Directive,
    EditFile,
    InsertLine,
    InsertPosition,
    MatchType,
    ReplaceLine,
)
from .validation import SystemValidation

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")

SCRIPT_KEYS = {
    "provider": "provider",
    "host": "host",
    "port": "port",
    "user": "user",
    "authType": "auth_type",
    "password": "password",
    "publicKeyPath": "public_key_path",
    "privateKeyPath": "private_key_path",
    "keyPassphrase": "key_passphrase",
    "passphrase": "key_passphrase",
    "systemValidation": "system_validation",
}

ACTION_ALIASES: dict[str, dict[str, str]] = {
    "addUser": {"extraGroups": "groups", "group": "groups", "user": "username"},
    "addGroup": {"group": "name"},
    "installPackages": {"package": "packages"},
    "removePackages": {"package": "packages"},
    "addPackageRepo": {
        "type": "repo_type",
        "sourceListDefURL": "source_list_url",
        "sourceListURL": "source_list_url",
    },
    "removeFile": {"file": "path"},
    "firewall": {"type": "firewall_type"},
}

MATCH_TYPES = {
    "startsWith": MatchType.STARTS_WITH,
    "contains": MatchType.CONTAINS,
    "exact": MatchType.EXACT,
    "matches": MatchType.EXACT,
    "endsWith": MatchType.ENDS_WITH,
}

DIRECTIVE_KEYS = ("insertLine", "replaceLine", "commentLine")


def snake_case(key: str) -> str:
    return _CAMEL_RE.sub(r"_\1", key).lower()


class ScriptLoader:
    """Builds a :class:`ControlScript` from a YAML control script."""

    def load(self, path: Union[str, Path]) -> ControlScript:
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise ScriptError(f"cannot read {path}: {exc}") from exc
        return self.loads(text, source=str(path))

    def loads(self, text: str, *, source: str = "<script>") -> ControlScript:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            where = f"{source}:{mark.line + 1}:{mark.column + 1}" if mark else source
            raise ScriptError(f"{where} invalid YAML: {exc}") from None
        if not isinstance(data, dict):
            raise ScriptError(f"{source}: a control script must be a mapping")
        try:
            return self.parse(data)
        except ScriptError as exc:
            raise ScriptError(f"{source}: {exc}") from None

    def parse(self, data: dict[str, Any]) -> ControlScript:
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key == "actions":
                continue
            target = SCRIPT_KEYS.get(key)
            if target is None:
                logger.warning("ignoring unknown script key '%s'", key)
                continue
            values[target] = value

        provider = values.get("provider")
        if not provider:
            raise ScriptError("the 'provider' key is required")
        values["provider"] = str(provider)
        for key in ("host", "user"):
            if values.get(key) is not None:
                values[key] = str(values[key])
        try:
            values["port"] = int(values.get("port", 22))
        except (TypeError, ValueError):
            raise ScriptError(f"invalid port '{values.get('port')}'") from None
        if values.get("system_validation") is not None:
            values["system_validation"] = str(values["system_validation"])
            SystemValidation.parse(values["system_validation"])

        raw_actions = data.get("actions") or []
        if not isinstance(raw_actions, list):
            raise ScriptError("'actions' must be a list")
        values["actions"] = tuple(
            self.parse_action(item, index) for index, item in enumerate(raw_actions, start=1)
        )
        return ControlScript(**values)

    def parse_action(self, item: Any, index: int) -> Action:
        if not isinstance(item, dict) or len(item) != 1:
            raise ScriptError(f"action {index}: expected a single-key mapping such as '- installPackages: ...'")
        kind, params = next(iter(item.items()))
        action_cls = ACTION_KINDS.get(kind)
        if action_cls is None:
            raise ScriptError(f"action {index}: unknown action kind '{kind}'")
        params = params or {}
        if not isinstance(params, dict):
            raise ScriptError(f"action {index} ({kind}): parameters must be a mapping")
        try:
            if action_cls is EditFile:
                return self._parse_edit_file(params)
            return self._build(action_cls, params)
        except (TypeError, ValueError) as exc:
            raise ScriptError(f"action {index} ({kind}): {exc}") from None
        except ScriptError as exc:
            raise ScriptError(f"action {index} ({kind}): {exc}") from None

    def _build(self, action_cls: type[Action], params: dict[str, Any]) -> Action:
        aliases = ACTION_ALIASES.get(action_cls.kind, {})
        hints = get_type_hints(action_cls)
        known = {f.name for f in fields(action_cls)}
        kwargs: dict[str, Any] = {}
        for key, value in params.items():
            name = aliases.get(key) or snake_case(key)
            if name not in known:
                raise ScriptError(f"unknown parameter '{key}'")
            kwargs[name] = _coerce(key, hints[name], value)
        return action_cls(**kwargs)

    def _parse_edit_file(self, params: dict[str, Any]) -> EditFile:
        directives: list[Directive] = []
        filepath = params.get("filepath") or params.get("path") or ""
        backup = params.get("backup", False)
        ignore_failure = params.get("ignoreFailure", False)
        for key, value in params.items():
            if key in {"filepath", "path", "backup", "ignoreFailure"}:
                continue
            if key not in DIRECTIVE_KEYS:
                raise ScriptError(f"unknown parameter '{key}'")
            entries = value if isinstance(value, list) else [value]
            for entry in entries:
                if not isinstance(entry, dict):
                    raise ScriptError(f"{key} entries must be mappings")
                directives.append(_parse_directive(key, entry))
        return EditFile(
            filepath=str(filepath),
            directives=tuple(directives),
            backup=_coerce("backup", bool, backup),
            ignore_failure=_coerce("ignoreFailure", bool, ignore_failure),
        )


def _parse_directive(kind: str, entry: dict[str, Any]) -> Directive:
    match_string = entry.get("matchString")
    if match_string is None or match_string == "":
        raise ScriptError(f"{kind} requires matchString")
    raw_type = entry.get("matchType", "contains")
    match_type = MATCH_TYPES.get(str(raw_type))
    if match_type is None:
        raise ScriptError(f"{kind}: unknown matchType '{raw_type}'")
    common = {
        "match_string": str(match_string),
        "match_type": match_type,
        "once_only": _coerce("onceOnly", bool, entry.get("onceOnly", False)),
        "report_failure": _coerce("reportFailure", bool, entry.get("reportFailure", False)),
    }
    if kind == "insertLine":
        if "insertString" not in entry:
            raise ScriptError("insertLine requires insertString")
        raw_position = entry.get("position")
        if raw_position is None:
            logger.warning("insertLine for %r has no position, defaulting to below", match_string)
            raw_position = "below"
        try:
            position = InsertPosition(str(raw_position).lower())
        except ValueError:
            raise ScriptError(f"insertLine: unknown position '{raw_position}'") from None
        return InsertLine(insert_string=str(entry["insertString"]), position=position, **common)
    if kind == "replaceLine":
        if "replaceString" not in entry:
            raise ScriptError("replaceLine requires replaceString")
        return ReplaceLine(replace_string=str(entry["replaceString"]), **common)
    return CommentLine(comment_char=str(entry.get("commentChar", "#")), **common)


def _coerce(key: str, hint: Any, value: Any) -> Any:
    if value is None:
        return None
    if get_origin(hint) is Union:
        hint = next(arg for arg in get_args(hint) if arg is not type(None))
    if hint is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in {"true", "yes", "false", "no"}:
            return value.lower() in {"true", "yes"}
        raise ScriptError(f"'{key}' must be true or false")
    if hint is int:
        if isinstance(value, bool):
            raise ScriptError(f"'{key}' must be an integer")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ScriptError(f"'{key}' must be an integer") from None
    if get_origin(hint) is tuple:
        items = value if isinstance(value, list) else [value]
        return tuple(str(item) for item in items)
    if isinstance(value, (dict, list)):
        raise ScriptError(f"'{key}' must be a scalar value")
    if isinstance(value, bool):
        # YAML 1.1 reads bare yes/no as booleans
        return "yes" if value else "no"
    return str(value)


def load_script(path: Union[str, Path], loader: Optional[ScriptLoader] = None) -> ControlScript:
    return (loader or ScriptLoader()).load(path)
