from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Protocol
import getpass
import logging
import sys

from .errors import AmbiguousAuthError, CredentialError
from .types import PROMPT_SENTINEL, ControlScript

logger = logging.getLogger(__name__)

AUTH_USERPASS = "userpass"
AUTH_PUBLICKEY = "publickey"

_SECRET_FIELDS = {"password", "key_passphrase"}
_PROMPTS = {
    "host": "Please enter hostname to connect to: ",
    "user": "Please enter username to authenticate with: ",
    "password": "Enter password: ",
    "key_passphrase": "Enter passphrase for private key: ",
}


class PromptProvider(Protocol):
    def ask(self, prompt: str, *, secret: bool) -> str:
        ...


class TerminalPrompt:
    """Reads answers from the controlling terminal, masking secrets."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin

    def ask(self, prompt: str, *, secret: bool) -> str:
        if not self.stream.isatty():
            raise CredentialError(f"cannot prompt for input ({prompt.strip()}): stdin is not a terminal")
        try:
            if secret:
                return getpass.getpass(prompt)
            return input(prompt).strip()
        except EOFError as exc:
            raise CredentialError(f"no answer given for {prompt.strip()!r}") from exc


class StaticPrompt:
    """Answers prompts from a fixed mapping keyed on the prompt text."""

    def __init__(self, answers: Mapping[str, str]):
        self.answers = dict(answers)
        self.asked: list[str] = []

    def ask(self, prompt: str, *, secret: bool) -> str:  # noqa: ARG002
        self.asked.append(prompt)
        for key, value in self.answers.items():
            if key in prompt:
                return value
        raise CredentialError(f"no canned answer for prompt {prompt!r}")


@dataclass(frozen=True)
class Credentials:
    username: str
    auth_type: str
    password: Optional[str] = None
    private_key_path: Optional[str] = None
    public_key_path: Optional[str] = None
    passphrase: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"Credentials(username={self.username!r}, auth_type={self.auth_type!r}, "
            f"private_key_path={self.private_key_path!r})"
        )


def infer_auth_type(script: ControlScript) -> str:
    if script.auth_type:
        auth_type = script.auth_type.strip().lower()
        if auth_type not in {AUTH_USERPASS, AUTH_PUBLICKEY}:
            raise CredentialError(f"unsupported authType '{script.auth_type}'")
        return auth_type

    has_key_fields = bool(script.public_key_path or script.private_key_path)
    if has_key_fields and script.password:
        raise AmbiguousAuthError(
            "both key paths and a password were supplied; set authType to choose one"
        )
    if script.public_key_path and script.private_key_path:
        return AUTH_PUBLICKEY
    return AUTH_USERPASS


class CredentialResolver:
    """Resolves host, user and secret fields of a script on first use."""

    def __init__(self, script: ControlScript, prompt: Optional[PromptProvider] = None):
        self.script = script
        self.prompt: PromptProvider = prompt or TerminalPrompt()
        self._resolved: dict[str, Optional[str]] = {}

    def resolve(self, field: str) -> Optional[str]:
        if field in self._resolved:
            return self._resolved[field]
        raw = getattr(self.script, field)
        if field in {"host", "user"} and not raw:
            raw = PROMPT_SENTINEL
        value = self.resolve_value(raw, _PROMPTS.get(field, f"Enter {field}: "), secret=field in _SECRET_FIELDS)
        self._resolved[field] = value
        return value

    def resolve_value(self, raw: Optional[str], prompt: str, *, secret: bool) -> Optional[str]:
        if raw != PROMPT_SENTINEL:
            return raw
        logger.debug("prompting for %s", prompt.strip())
        value = self.prompt.ask(prompt, secret=secret)
        if not value:
            raise CredentialError(f"empty answer for {prompt.strip()!r}")
        return value

    def credentials(self) -> Credentials:
        auth_type = infer_auth_type(self.script)
        username = self.resolve("user")
        if not username:
            raise CredentialError("no username available")

        if auth_type == AUTH_PUBLICKEY:
            if not self.script.private_key_path:
                raise CredentialError("publickey authentication requires privateKeyPath")
            return Credentials(
                username=username,
                auth_type=auth_type,
                private_key_path=self.script.private_key_path,
                public_key_path=self.script.public_key_path,
                passphrase=self.resolve("key_passphrase"),
            )

        if self.script.password is None:
            self._resolved["password"] = self.resolve_value(
                PROMPT_SENTINEL,
                f"Enter password for user '{username}': ",
                secret=True,
            )
        return Credentials(username=username, auth_type=auth_type, password=self.resolve("password"))
