"""
Audit logging module.
Admin actions on the gateway are appended to a JSON-lines file.
Passwords and session tokens are never written.
"""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, path: Optional[Path]):
        self.path = Path(path) if path else None

    def log_action(self, action: str, subject: str, details: dict = None):
        """
        Append one entry to the audit log.

        Args:
            action: Action type (e.g., 'port_assigned', 'admin_login_failed')
            subject: What the action was applied to
            details: Additional metadata
        """
        if self.path is None:
            return

        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "action": action,
            "subject": subject,
            "details": details or {},
        }

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            # The audited action already happened; losing the trail must not undo it.
            logger.error(f"Failed to write audit entry {action}: {e}")

    def log_admin_login(self, success: bool, ip: str = None):
        self.log_action(
            "admin_login_success" if success else "admin_login_failed",
            "admin",
            {"ip": ip},
        )

    def log_admin_logout(self, ip: str = None):
        self.log_action("admin_logout", "admin", {"ip": ip})

    def log_port_assigned(self, port: int, previous: int, history: list):
        self.log_action("port_assigned", "tunnel", {"port": port, "previous": previous, "history": history})

    def log_port_released(self, previous: int):
        self.log_action("port_released", "tunnel", {"previous": previous})

    def log_wg_reload(self, success: bool, error: str = None):
        """Log WireGuard reload attempt."""
        self.log_action("wg_reload", "system", {"success": success, "error": error})
