"""Transports that materialise files and run commands on the appliance.

Two implementations share the :class:`Publisher` contract:

* :class:`SSHPublisher` talks to the real NGINX/keepalived host over SSH;
* :class:`LocalDirectoryPublisher` mirrors the remote filesystem below a local
  directory, which is what the unit tests and the lab use.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import asyncssh

from .exceptions import ExternalUnavailable

LOG = logging.getLogger(__name__)


class Publisher(ABC):
    """Narrow interface to the external load-balancing appliance."""

    @abstractmethod
    def push_file(self, remote_path: str, content: str) -> None:
        """Create or replace ``remote_path`` with ``content``."""

    @abstractmethod
    def remove_file(self, remote_path: str) -> None:
        """Delete ``remote_path``; a missing file is not an error."""

    @abstractmethod
    def run_command(self, command: str) -> None:
        """Run ``command`` on the appliance, raising on failure."""

    @abstractmethod
    def fetch_file(self, remote_path: str) -> str:
        """Return the content of ``remote_path`` or ``""`` when it is absent."""


class LocalDirectoryPublisher(Publisher):
    """Publish into ``root`` as if it were the appliance's ``/``.

    Commands are recorded in :attr:`commands`.  With ``execute=True`` they are
    also run through the local shell, which is handy when NGINX and keepalived
    live on the same machine as the agent.
    """

    def __init__(self, root: Path, *, execute: bool = False) -> None:
        self._root = Path(root)
        self._execute = execute
        self.commands: List[str] = []

    def local_path(self, remote_path: str) -> Path:
        relative = Path(remote_path.lstrip("/"))
        if ".." in relative.parts:
            raise ValueError(f"refusing to publish outside root: {remote_path}")
        return self._root / relative

    def push_file(self, remote_path: str, content: str) -> None:
        path = self.local_path(remote_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        except OSError as exc:
            raise ExternalUnavailable(f"failed to write {path}: {exc}") from exc
        LOG.debug("wrote %s", path)

    def remove_file(self, remote_path: str) -> None:
        path = self.local_path(remote_path)
        try:
            path.unlink()
        except FileNotFoundError:
            LOG.debug("%s already absent", path)
        except OSError as exc:
            raise ExternalUnavailable(f"failed to remove {path}: {exc}") from exc

    def run_command(self, command: str) -> None:
        self.commands.append(command)
        if not self._execute:
            return
        result = subprocess.run(
            command, shell=True, capture_output=True, text=True, check=False
        )
        if result.returncode != 0:
            raise ExternalUnavailable(
                f"command '{command}' failed: {result.stderr.strip()}"
            )

    def fetch_file(self, remote_path: str) -> str:
        path = self.local_path(remote_path)
        try:
            return path.read_text()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            raise ExternalUnavailable(f"failed to read {path}: {exc}") from exc


class SSHPublisher(Publisher):
    """Publish to the appliance over SSH using ``sudo`` for privileged paths.

    Every operation opens its own connection; the reconciler only pushes a
    handful of files per pass so connection reuse is not worth the state.
    """

    def __init__(
        self,
        host: str,
        username: str,
        *,
        port: int = 22,
        client_keys: Optional[Sequence[str]] = None,
        known_hosts: Optional[str] = None,
        timeout: float = 10.0,
        sudo: bool = True,
    ) -> None:
        self._host = host
        self._username = username
        self._port = port
        self._client_keys = list(client_keys) if client_keys else None
        self._known_hosts = known_hosts
        self._timeout = timeout
        self._sudo = "sudo " if sudo else ""

    def connect_options(self) -> Dict[str, Any]:
        """Keyword arguments for :func:`asyncssh.connect`.

        Unset key and known-hosts settings are left out so asyncssh falls back
        to ``~/.ssh``.  Passing ``None`` would disable public key auth or host
        key checking respectively.
        """

        options: Dict[str, Any] = {
            "port": self._port,
            "username": self._username,
            "connect_timeout": self._timeout,
        }
        if self._client_keys:
            options["client_keys"] = self._client_keys
        if self._known_hosts:
            options["known_hosts"] = self._known_hosts
        return options

    def _run(self, command: str, stdin: Optional[str] = None) -> str:
        return asyncio.run(self._run_async(command, stdin))

    async def _run_async(self, command: str, stdin: Optional[str]) -> str:
        try:
            async with asyncssh.connect(self._host, **self.connect_options()) as conn:
                result = await conn.run(command, input=stdin, check=False)
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
            raise ExternalUnavailable(
                f"SSH to {self._username}@{self._host}:{self._port} failed: {exc}"
            ) from exc

        if result.exit_status != 0:
            stderr = str(result.stderr or "").strip()
            raise ExternalUnavailable(
                f"command '{command}' failed on {self._host} "
                f"(exit {result.exit_status}): {stderr}"
            )
        return str(result.stdout or "")

    def push_file(self, remote_path: str, content: str) -> None:
        self._run(f"{self._sudo}tee {shlex.quote(remote_path)} > /dev/null", stdin=content)
        LOG.debug("pushed %s to %s", remote_path, self._host)

    def remove_file(self, remote_path: str) -> None:
        self._run(f"{self._sudo}rm -f {shlex.quote(remote_path)}")

    def run_command(self, command: str) -> None:
        self._run(command)

    def fetch_file(self, remote_path: str) -> str:
        quoted = shlex.quote(remote_path)
        return self._run(f"if [ -f {quoted} ]; then {self._sudo}cat {quoted}; fi")
