from __future__ import annotations

from pathlib import Path
from typing import Optional

import pytest

from prod_control.errors import DownloadError
from prod_control.transports import CommandResult, Transport


class FakeTransport(Transport):
    """In-memory transport: records commands and keeps remote files as text."""

    name = "fake"

    DEFAULT_RESPONSES = {
        "stat -c": (0, "644 root root\n", ""),
        "cat /etc/os-release": (0, 'ID=debian\nVERSION_ID="12"\n', ""),
    }

    def __init__(self, config=None, *, files: Optional[dict[str, str]] = None, responses=None):
        super().__init__(config)
        self.files = dict(files or {})
        self.responses = dict(responses or {})
        for pattern, response in self.DEFAULT_RESPONSES.items():
            self.responses.setdefault(pattern, response)
        self.commands: list[str] = []
        self.uploads: list[str] = []
        self.downloads: list[tuple[str, str]] = []
        self.connected: Optional[tuple[str, int]] = None
        self.credentials = None
        self.closed = False

    def connect(self, host: str, port: int) -> None:
        self.connected = (host, port)

    def authenticate(self, credentials) -> None:
        self.credentials = credentials

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        for pattern, response in self.responses.items():
            if pattern in command:
                if isinstance(response, Exception):
                    raise response
                returncode, stdout, stderr = response
                return CommandResult(command, stdout, stderr, returncode)
        return CommandResult(command, "", "", 0)

    def upload(self, local_path, remote_path: str) -> None:
        with open(local_path, encoding="utf-8", newline="") as handle:
            self.files[remote_path] = handle.read()
        self.uploads.append(remote_path)

    def download(self, remote_path: str, local_path) -> None:
        if remote_path not in self.files:
            raise DownloadError(f"{remote_path}: no such file", path=remote_path)
        self.downloads.append((remote_path, str(local_path)))
        with open(local_path, "w", encoding="utf-8", newline="") as handle:
            handle.write(self.files[remote_path])

    def close(self) -> None:
        self.closed = True

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for command in self.commands)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def local_file(tmp_path: Path):
    def make(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content)
        return path

    return make
