from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import logging
import os
import shutil
import socket
import subprocess
import tempfile

import paramiko

from .config import ControlConfig
from .credentials import AUTH_PUBLICKEY, Credentials
from .errors import AuthError, ConnectError, CredentialError, DownloadError, ExecError, UploadError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def open_socket(host: str, port: int, timeout: float) -> socket.socket:
    """Open a TCP connection, mapping failures onto ``ConnectError`` reasons."""

    target = f"{host}:{port}"
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except socket.gaierror as exc:
        raise ConnectError(f"cannot resolve {host}: {exc}", reason="dns") from exc
    except socket.timeout as exc:
        raise ConnectError(f"timed out connecting to {target}", reason="timeout") from exc
    except ConnectionRefusedError as exc:
        raise ConnectError(f"connection to {target} refused", reason="refused") from exc
    except OSError as exc:
        raise ConnectError(f"cannot connect to {target}: {exc}") from exc


class Transport:
    """Authenticated command and file channel to one remote host."""

    name = "base"

    def __init__(self, config: Optional[ControlConfig] = None):
        self.config = config or ControlConfig()

    def connect(self, host: str, port: int) -> None:
        raise NotImplementedError

    def authenticate(self, credentials: Credentials) -> None:
        raise NotImplementedError

    def run(self, command: str) -> CommandResult:
        """Run ``command`` remotely and capture its output and exit status."""
        raise NotImplementedError

    def upload(self, local_path: PathLike, remote_path: str) -> None:
        raise NotImplementedError

    def download(self, remote_path: str, local_path: PathLike) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ParamikoTransport(Transport):
    """Transport backed by paramiko's native SSH and SFTP implementation."""

    name = "paramiko"
    KEY_TYPES = (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey)

    def __init__(self, config: Optional[ControlConfig] = None):
        super().__init__(config)
        self._transport: Optional[paramiko.Transport] = None
        self._sftp: Optional[paramiko.SFTPClient] = None

    def connect(self, host: str, port: int) -> None:
        sock = open_socket(host, port, self.config.connect_timeout)
        transport = paramiko.Transport(sock)
        try:
            transport.start_client(timeout=self.config.connect_timeout)
        except (paramiko.SSHException, OSError) as exc:
            transport.close()
            raise ConnectError(f"SSH handshake with {host}:{port} failed: {exc}") from exc
        try:
            self._check_host_key(host, port, transport)
        except ConnectError:
            transport.close()
            raise
        self._transport = transport
        logger.debug("connected to %s:%s via paramiko", host, port)

    def _check_host_key(self, host: str, port: int, transport: paramiko.Transport) -> None:
        if not self.config.strict_host_keys:
            return
        path = self.config.known_hosts or Path("~/.ssh/known_hosts").expanduser()
        known = paramiko.HostKeys()
        if path.exists():
            known.load(str(path))
        lookup = host if port == 22 else f"[{host}]:{port}"
        if not known.check(lookup, transport.get_remote_server_key()):
            raise ConnectError(f"host key for {lookup} is not trusted by {path}", reason="host-key")

    def authenticate(self, credentials: Credentials) -> None:
        transport = self._require_transport()
        try:
            if credentials.auth_type == AUTH_PUBLICKEY:
                pkey = self._load_private_key(str(credentials.private_key_path), credentials.passphrase)
                transport.auth_publickey(credentials.username, pkey)
            else:
                transport.auth_password(credentials.username, credentials.password or "")
        except paramiko.BadAuthenticationType as exc:
            allowed = ", ".join(exc.allowed_types or [])
            raise AuthError(
                f"server does not accept {credentials.auth_type} authentication (allowed: {allowed})",
                reason="unsupported-method",
            ) from exc
        except paramiko.AuthenticationException as exc:
            raise AuthError(f"authentication rejected for user '{credentials.username}'") from exc
        except (paramiko.SSHException, OSError) as exc:
            raise AuthError(f"authentication failed: {exc}") from exc
        logger.debug("authenticated as %s using %s", credentials.username, credentials.auth_type)

    def _load_private_key(self, path: str, passphrase: Optional[str]) -> paramiko.PKey:
        for key_cls in self.KEY_TYPES:
            try:
                return key_cls.from_private_key_file(path, password=passphrase)
            except paramiko.PasswordRequiredException as exc:
                raise CredentialError(f"private key {path} is encrypted and no passphrase was given") from exc
            except paramiko.SSHException:
                continue
            except OSError as exc:
                raise CredentialError(f"cannot read private key {path}: {exc}") from exc
        raise AuthError(f"unsupported private key format in {path}", reason="unsupported-method")

    def run(self, command: str) -> CommandResult:
        transport = self._require_transport()
        channel = None
        try:
            channel = transport.open_session(timeout=self.config.connect_timeout)
            if self.config.command_timeout:
                channel.settimeout(self.config.command_timeout)
            channel.exec_command(command)
            stdout = channel.makefile("rb").read().decode(errors="replace")
            stderr = channel.makefile_stderr("rb").read().decode(errors="replace")
            returncode = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise ExecError(f"channel failure: {exc}") from exc
        finally:
            if channel is not None:
                channel.close()
        return CommandResult(command, stdout, stderr, returncode)

    def upload(self, local_path: PathLike, remote_path: str) -> None:
        try:
            self._sftp_client().put(str(local_path), remote_path)
        except (paramiko.SSHException, OSError) as exc:
            raise UploadError(f"upload of {local_path} to {remote_path} failed: {exc}", path=remote_path) from exc

    def download(self, remote_path: str, local_path: PathLike) -> None:
        try:
            self._sftp_client().get(remote_path, str(local_path))
        except (paramiko.SSHException, OSError) as exc:
            raise DownloadError(f"download of {remote_path} failed: {exc}", path=remote_path) from exc

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def _sftp_client(self) -> paramiko.SFTPClient:
        if self._sftp is None:
            client = paramiko.SFTPClient.from_transport(self._require_transport())
            if client is None:
                raise paramiko.SSHException("unable to open SFTP session")
            self._sftp = client
        return self._sftp

    def _require_transport(self) -> paramiko.Transport:
        if self._transport is None or not self._transport.is_active():
            raise ExecError("transport is not connected")
        return self._transport


ASKPASS_SCRIPT = '#!/bin/sh\nprintf \'%s\\n\' "$PROD_CONTROL_SECRET"\n'


class OpenSSHTransport(Transport):
    """Transport that drives the system ``ssh``/``scp`` clients.

    A ControlMaster connection is opened during :meth:`authenticate` and every
    later command and copy reuses it through the control socket, so the
    credentials are only presented once.

    An exit status of 255 is only treated as a channel failure when the
    master no longer answers ``ssh -O check``; otherwise it is the remote
    command's own status.
    """

    name = "openssh"

    def __init__(
        self,
        config: Optional[ControlConfig] = None,
        *,
        ssh_binary: str = "ssh",
        scp_binary: str = "scp",
    ):
        super().__init__(config)
        self.ssh_binary = ssh_binary
        self.scp_binary = scp_binary
        self.host: Optional[str] = None
        self.port = 22
        self.username: Optional[str] = None
        self._control_dir: Optional[Path] = None
        self._master = False

    @property
    def control_path(self) -> Path:
        if self._control_dir is None:
            raise ExecError("transport is not connected")
        return self._control_dir / "master.sock"

    def connect(self, host: str, port: int) -> None:
        probe = open_socket(host, port, self.config.connect_timeout)
        probe.close()
        self.host, self.port = host, port
        self._control_dir = Path(tempfile.mkdtemp(prefix="prod-control-ssh-"))

    def authenticate(self, credentials: Credentials) -> None:
        if self.host is None:
            raise ConnectError("authenticate called before connect")
        self.username = credentials.username
        cmd = [self.ssh_binary, "-M", "-N", "-f", "-o", "ControlPersist=yes", *self._options(), "-p", str(self.port)]
        if credentials.auth_type == AUTH_PUBLICKEY:
            cmd += [
                "-i",
                str(credentials.private_key_path),
                "-o",
                "IdentitiesOnly=yes",
                "-o",
                "PreferredAuthentications=publickey",
            ]
            secret = credentials.passphrase
        else:
            cmd += [
                "-o",
                "PreferredAuthentications=password,keyboard-interactive",
                "-o",
                "PubkeyAuthentication=no",
            ]
            secret = credentials.password

        env = None
        if secret is None:
            cmd += ["-o", "BatchMode=yes"]
        else:
            env = os.environ.copy()
            env.update(
                SSH_ASKPASS=str(self._write_askpass()),
                SSH_ASKPASS_REQUIRE="force",
                DISPLAY=env.get("DISPLAY", ":0"),
                PROD_CONTROL_SECRET=secret,
            )
        cmd.append(self._target())

        # The backgrounded master keeps inherited pipes open, so stderr goes
        # to a file rather than a pipe.
        with tempfile.TemporaryFile(mode="w+") as err:
            try:
                proc = subprocess.run(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=err,
                    env=env,
                    timeout=self.config.connect_timeout * 3,
                )
            except subprocess.TimeoutExpired as exc:
                raise ConnectError(f"timed out authenticating to {self.host}", reason="timeout") from exc
            except OSError as exc:
                raise ConnectError(f"cannot start {self.ssh_binary}: {exc}") from exc
            err.seek(0)
            stderr = err.read().strip()
        if proc.returncode != 0:
            raise self._classify_failure(stderr)
        self._master = True
        logger.debug("control master established for %s", self._target())

    def run(self, command: str) -> CommandResult:
        cmd = [self.ssh_binary, *self._options(), "-o", "BatchMode=yes", "-p", str(self.port), self._target(), "--", command]
        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.config.command_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ExecError(f"ssh failed to run command: {exc}") from exc
        # ssh reports its own failures as 255, which a remote command may also return
        if proc.returncode == 255 and not self._master_alive():
            raise ExecError(f"ssh channel failure: {proc.stderr.strip()}")
        return CommandResult(command, proc.stdout, proc.stderr, proc.returncode)

    def _master_alive(self) -> bool:
        try:
            proc = subprocess.run(
                [self.ssh_binary, "-o", f"ControlPath={self.control_path}", "-O", "check", self._target()],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=False,
            )
        except OSError:
            return False
        return proc.returncode == 0

    def upload(self, local_path: PathLike, remote_path: str) -> None:
        self._copy(str(local_path), f"{self._target()}:{remote_path}", UploadError, remote_path)

    def download(self, remote_path: str, local_path: PathLike) -> None:
        self._copy(f"{self._target()}:{remote_path}", str(local_path), DownloadError, remote_path)

    def close(self) -> None:
        if self._master:
            subprocess.run(
                [self.ssh_binary, "-o", f"ControlPath={self.control_path}", "-O", "exit", self._target()],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                check=False,
            )
            self._master = False
        if self._control_dir is not None:
            shutil.rmtree(self._control_dir, ignore_errors=True)
            self._control_dir = None

    def _copy(self, source: str, dest: str, error_cls, remote_path: str) -> None:
        cmd = [self.scp_binary, "-q", *self._options(), "-o", "BatchMode=yes", "-P", str(self.port), source, dest]
        try:
            proc = subprocess.run(cmd, stdin=subprocess.DEVNULL, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise error_cls(f"cannot start {self.scp_binary}: {exc}", path=remote_path) from exc
        if proc.returncode != 0:
            raise error_cls(f"scp {source} -> {dest} failed: {proc.stderr.strip()}", path=remote_path)

    def _options(self) -> list[str]:
        opts = [
            "-o",
            f"ControlPath={self.control_path}",
            "-o",
            f"ConnectTimeout={int(self.config.connect_timeout)}",
        ]
        if self.config.strict_host_keys:
            opts += ["-o", "StrictHostKeyChecking=yes"]
            if self.config.known_hosts:
                opts += ["-o", f"UserKnownHostsFile={self.config.known_hosts}"]
        else:
            opts += ["-o", "StrictHostKeyChecking=accept-new"]
        return opts

    def _target(self) -> str:
        if self.username:
            return f"{self.username}@{self.host}"
        return str(self.host)

    def _write_askpass(self) -> Path:
        script = self.control_path.parent / "askpass.sh"
        script.write_text(ASKPASS_SCRIPT)
        script.chmod(0o700)
        return script

    def _classify_failure(self, stderr: str) -> Exception:
        lowered = stderr.lower()
        if "could not resolve hostname" in lowered:
            return ConnectError(stderr, reason="dns")
        if "timed out" in lowered:
            return ConnectError(stderr, reason="timeout")
        if "connection refused" in lowered:
            return ConnectError(stderr, reason="refused")
        if "no matching" in lowered or "unable to negotiate" in lowered or "no supported authentication" in lowered:
            return AuthError(stderr, reason="unsupported-method")
        return AuthError(stderr or "authentication failed")


_TRANSPORTS: dict[str, type[Transport]] = {
    ParamikoTransport.name: ParamikoTransport,
    OpenSSHTransport.name: OpenSSHTransport,
}


def create_transport(name: str, config: Optional[ControlConfig] = None) -> Transport:
    try:
        transport_cls = _TRANSPORTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown transport '{name}'") from None
    return transport_cls(config)
