"""Copier - smbclient upload to the configured SMB target."""

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from ink.core.errors import ConfigurationError, CopyError

logger = logging.getLogger(__name__)

_SMB_ILLEGAL = re.compile(r'[:*?"<>|]')


def sanitize_remote_path(path: str) -> str:
    """Replace characters SMB rejects; ``/`` is kept as the separator."""
    return _SMB_ILLEGAL.sub("-", path)


@dataclass(frozen=True)
class SmbTarget:
    """Parsed ``smb://host/share/prefix`` target."""

    host: str
    share: str
    prefix: str = ""

    @classmethod
    def parse(cls, target: str) -> "SmbTarget":
        match = re.match(r"^smb://([^/]+)/([^/]+)(.*)$", target)
        if not match:
            raise ConfigurationError(f"Invalid SMB_TARGET {target!r}. Expected smb://host/share/path")
        host, share, prefix = match.groups()
        return cls(host=host, share=share, prefix=prefix.strip("/"))

    @property
    def service(self) -> str:
        return f"//{self.host}/{self.share}"

    def url(self, remote_path: str) -> str:
        return f"smb://{self.host}/{self.share}/{remote_path}"


class SmbCopier:
    """Uploads files with ``smbclient -c 'mkdir ...; put ...'``."""

    def __init__(self, target: SmbTarget, user: str, password: str, smbclient_path: str = "smbclient") -> None:
        self.target = target
        self._user = user
        self._password = password
        self.smbclient_path = smbclient_path

    def remote_path(self, directory: str, filename: str) -> tuple[str, str]:
        """Return sanitized (remote_dir, remote_path) under the target prefix."""
        parts = [p for p in (self.target.prefix, directory.strip("/")) if p]
        remote_dir = sanitize_remote_path(str(PurePosixPath(*parts)) if parts else "")
        remote_file = sanitize_remote_path(filename)
        remote = f"{remote_dir}/{remote_file}" if remote_dir else remote_file
        return remote_dir, remote

    async def _smbclient(self, commands: str) -> None:
        cmd = [self.smbclient_path, self.target.service, "-U", f"{self._user}%{self._password}", "-c", commands]
        logger.debug(f"Running smbclient against {self.target.service}: {commands}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=True,
            )
        except FileNotFoundError as e:
            raise CopyError(f"smbclient not found at: {self.smbclient_path}") from e

        output, _ = await process.communicate()
        text = output.decode(errors="replace")
        # smbclient reports many failures (NT_STATUS_*) with exit code 0
        if process.returncode != 0 or ("NT_STATUS_" in text and "NT_STATUS_OBJECT_NAME_COLLISION" not in text):
            raise CopyError(f"smbclient failed (exit {process.returncode}): {text.strip()[-500:]}")

    async def copy(self, local_path: Path, directory: str, filename: str) -> str:
        """Upload ``local_path`` and return the destination URL.

        Creates the remote directory first; if that attempt fails, retries the
        upload once without ``mkdir``.
        """
        if not local_path.is_file():
            raise CopyError(f"Local file not found: {local_path}")

        remote_dir, remote = self.remote_path(directory, filename)
        put = f'put "{local_path}" "{remote}"'
        mkdirs = "; ".join(f'mkdir "{d}"' for d in _ancestors(remote_dir))

        try:
            await self._smbclient(f"{mkdirs}; {put}" if mkdirs else put)
        except CopyError as e:
            logger.warning(f"Copy with mkdir failed, retrying without: {e}")
            await self._smbclient(put)

        return self.target.url(remote)


def _ancestors(remote_dir: str) -> list[str]:
    """``a/b/c`` -> ``[a, a/b, a/b/c]``."""
    if not remote_dir:
        return []
    parts = remote_dir.split("/")
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]
