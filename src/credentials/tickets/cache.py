"""Durable tier of the ticket cache: one JSON record per (tenant, service)."""

import logging
from pathlib import Path
from urllib.parse import quote

from credentials.domain.models import AccessTicket, TicketKey
from credentials.storage import SECRET_FILE_MODE, read_json, write_json

logger = logging.getLogger(__name__)

RECORD_PREFIX = "ta_"


class DiskTicketCache:
    """Stores tickets as ``ta_<tenant>_<service>.json`` under one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, key: TicketKey) -> Path:
        tenant_id, service = key
        # Percent-encoding keeps distinct services on distinct files
        safe_service = quote(service, safe="")
        return self.directory / f"{RECORD_PREFIX}{tenant_id}_{safe_service}.json"

    def load(self, key: TicketKey) -> AccessTicket | None:
        """Return the stored ticket, or None when absent or unreadable."""
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return AccessTicket.from_record(key, read_json(path))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(
                "ticket_record_unreadable",
                extra={"path": str(path), "error": str(e)},
            )
            return None

    def save(self, ticket: AccessTicket) -> Path:
        """Persist a ticket atomically.

        Raises:
            OSError: If the record cannot be written.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(ticket.key)
        write_json(path, ticket.to_record(), mode=SECRET_FILE_MODE)
        return path

    def delete(self, key: TicketKey) -> bool:
        return self._unlink(self.path_for(key))

    def delete_for_tenant(self, tenant_id: int) -> int:
        return self._sweep(f"{RECORD_PREFIX}{tenant_id}_*.json")

    def clear(self) -> int:
        return self._sweep(f"{RECORD_PREFIX}*.json")

    def _sweep(self, pattern: str) -> int:
        if not self.directory.exists():
            return 0
        return sum(1 for path in sorted(self.directory.glob(pattern)) if self._unlink(path))

    def _unlink(self, path: Path) -> bool:
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(
                "ticket_record_delete_failed",
                extra={"path": str(path), "error": str(e)},
            )
            return False
