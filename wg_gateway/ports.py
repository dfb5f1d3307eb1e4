"""
Port lease allocator.
Leases the tunnel's listening port out of the WG_PORTS range, avoiding ports
used before, and persists each decision to the override file.

All changes replace the whole override record (temp file + atomic rename)
and are followed by a WireGuard reload. A failed reload restores the
previous record.
"""
import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel

from .audit import AuditLog
from .config import ConfigResolver, ConfigurationSnapshot, PortOverride, PortRange
from .errors import OverrideWriteError, PortOutOfRangeError, WireGuardError
from .wg import WireGuardService

logger = logging.getLogger(__name__)

OVERRIDE_MODE = 0o660
UNASSIGNED = 0


class PortStatus(BaseModel):
    port: int
    range: PortRange
    history: Tuple[int, ...]


def _atomic_write(path: Path, content: bytes) -> None:
    try:
        temp_fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".wg_config.", suffix=".tmp")
    except OSError as e:
        raise OverrideWriteError(f"Cannot write port override {path}: {e}") from e
    try:
        with os.fdopen(temp_fd, "wb") as tmp:
            tmp.write(content)
        os.chmod(temp_path, OVERRIDE_MODE)
        os.replace(temp_path, path)
    except OSError as e:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise OverrideWriteError(f"Cannot write port override {path}: {e}") from e


def write_override(path: Path, override: PortOverride) -> None:
    """Replace the override file with exactly WG_PORT and WG_HISTORY_PORT."""
    content = json.dumps(override.to_file_data(), indent=2)
    _atomic_write(path, content.encode())


def _read_raw(path: Path) -> Optional[bytes]:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise OverrideWriteError(f"Cannot read port override {path}: {e}") from e


def _restore(path: Path, previous: Optional[bytes]) -> None:
    if previous is None:
        path.unlink(missing_ok=True)
    else:
        _atomic_write(path, previous)


class PortLeaseAllocator:
    def __init__(self, resolver: ConfigResolver, wireguard: WireGuardService, audit: AuditLog = None):
        self.resolver = resolver
        self.wireguard = wireguard
        self.audit = audit or AuditLog(None)
        # Serialises read-modify-write of the override file across requests.
        self._lock = asyncio.Lock()

    async def _snapshot(self) -> ConfigurationSnapshot:
        return await asyncio.to_thread(self.resolver.resolve)

    async def status(self) -> PortStatus:
        snapshot = await self._snapshot()
        return PortStatus(
            port=snapshot.wg_port,
            range=snapshot.wg_ports,
            history=snapshot.wg_history_port,
        )

    async def assign(self, requested_port: Optional[int] = None) -> int:
        """
        Lease `requested_port`, or the lowest free port of the range when omitted.

        Returns the leased port, the unchanged current port when nothing needs
        to change, or UNASSIGNED when every candidate is in the history.
        """
        async with self._lock:
            snapshot = await self._snapshot()
            current = snapshot.wg_port
            history = list(snapshot.wg_history_port)

            if requested_port:
                if requested_port == current:
                    return current
                if requested_port not in snapshot.wg_ports:
                    raise PortOutOfRangeError(
                        f"Port {requested_port} is outside the allowed range {snapshot.wg_ports}"
                    )
                port = requested_port
            else:
                used = set(history)
                port = next((p for p in snapshot.wg_ports.scan() if p not in used), UNASSIGNED)
                if port == UNASSIGNED:
                    logger.warning(f"Every port in {snapshot.wg_ports} has been used, nothing assigned")
                    return UNASSIGNED
                if port == current:
                    return current

            if current and current not in history:
                history.append(current)

            await self._persist(snapshot.override_path, PortOverride(port=port, history=tuple(history)))
            logger.info(f"Tunnel port changed {current} -> {port}")
            self.audit.log_port_assigned(port, current, history)
            return port

    async def release(self) -> int:
        """Reset the lease: port 0 and an empty history, whatever was there before."""
        async with self._lock:
            snapshot = await self._snapshot()
            await self._persist(snapshot.override_path, PortOverride(port=UNASSIGNED, history=()))
            logger.info(f"Tunnel port {snapshot.wg_port} released, history cleared")
            self.audit.log_port_released(snapshot.wg_port)
            return UNASSIGNED

    async def _persist(self, path: Path, override: PortOverride) -> None:
        previous = await asyncio.to_thread(_read_raw, path)
        await asyncio.to_thread(write_override, path, override)

        try:
            await self.wireguard.save_config()
        except WireGuardError as e:
            logger.error(f"WireGuard reload failed, restoring previous port override: {e.message}")
            self.audit.log_wg_reload(False, e.message)
            await asyncio.to_thread(_restore, path, previous)
            raise

        self.audit.log_wg_reload(True)
