"""
flowengine/whatsapp/credentials.py
──────────────────────────────────
Persistence of each tenant's transport credentials, so a restart or a
dropped connection does not force the tenant to scan a new QR code.

The blob is opaque to us.  FileCredentialStore keeps it at
    <sessions_dir>/user_<tenant_id>/auth_info.json
and removes the whole tenant directory on logout.
"""

from __future__ import annotations
import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Any, Protocol

from flowengine.errors import CredentialsCorruptedError

logger = logging.getLogger(__name__)

AUTH_FILE = "auth_info.json"


class CredentialStore(Protocol):
    async def load(self, tenant_id: int) -> dict[str, Any] | None: ...
    async def save(self, tenant_id: int, credentials: dict[str, Any]) -> None: ...
    async def clear(self, tenant_id: int) -> None: ...


class FileCredentialStore:
    def __init__(self, sessions_dir: Path | str):
        self.sessions_dir = Path(sessions_dir)

    def tenant_dir(self, tenant_id: int) -> Path:
        return self.sessions_dir / f"user_{tenant_id}"

    # ── sync helpers (run in a worker thread) ─────────────────────────

    def _read(self, tenant_id: int) -> dict[str, Any] | None:
        path = self.tenant_dir(tenant_id) / AUTH_FILE
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CredentialsCorruptedError(f"Unreadable credentials at {path}: {exc}") from exc

    def _write(self, tenant_id: int, credentials: dict[str, Any]) -> None:
        directory = self.tenant_dir(tenant_id)
        directory.mkdir(parents=True, exist_ok=True)
        tmp = directory / f"{AUTH_FILE}.tmp"
        tmp.write_text(json.dumps(credentials), encoding="utf-8")
        tmp.replace(directory / AUTH_FILE)

    def _remove(self, tenant_id: int) -> None:
        directory = self.tenant_dir(tenant_id)
        if directory.exists():
            shutil.rmtree(directory)

    # ── public API ────────────────────────────────────────────────────

    async def load(self, tenant_id: int) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read, tenant_id)

    async def save(self, tenant_id: int, credentials: dict[str, Any]) -> None:
        await asyncio.to_thread(self._write, tenant_id, credentials)
        logger.debug("Credentials saved for tenant %s", tenant_id)

    async def clear(self, tenant_id: int) -> None:
        """Delete the tenant's credentials. I/O errors are logged, never raised."""
        try:
            await asyncio.to_thread(self._remove, tenant_id)
            logger.info("Session files removed for tenant %s", tenant_id)
        except OSError as exc:
            logger.error("Failed to clean session files for tenant %s: %s", tenant_id, exc)
