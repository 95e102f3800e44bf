"""
JSON file storage for ballot state, one file per ballot address.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from typing import Any, Dict, List

from roundvote.core.ballot_exceptions import BallotStorageError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


class BallotStore:
    """Persists serialized ballots under ``data_dir`` as ``<address>.json``."""

    def __init__(self, data_dir: str) -> None:
        self.data_dir = os.path.abspath(data_dir)
        self._lock = threading.RLock()
        try:
            os.makedirs(self.data_dir, exist_ok=True)
        except OSError as exc:
            raise BallotStorageError(
                f"Cannot create ballot data directory {self.data_dir}",
                details={"data_dir": self.data_dir, "error": str(exc)},
            ) from exc

    def _path(self, address: str) -> str:
        key = address.lower()
        if not _ADDRESS_RE.match(key):
            raise BallotStorageError(
                f"Invalid ballot address: {address!r}",
                details={"address": address},
                recoverable=False,
            )
        return os.path.join(self.data_dir, f"{key}.json")

    def exists(self, address: str) -> bool:
        return os.path.exists(self._path(address))

    def save(self, address: str, payload: Dict[str, Any]) -> None:
        """Write ``payload`` atomically: temp file, fsync, then rename over the target."""
        path = self._path(address)
        tmp_path = f"{path}.tmp"
        with self._lock:
            try:
                with open(tmp_path, "w", encoding="utf-8") as handle:
                    json.dump(payload, handle, indent=2, sort_keys=True)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as exc:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                logger.error(
                    "Failed to persist ballot state",
                    extra={"event": "ballot.storage.save_failed", "address": address, "error": str(exc)},
                )
                raise BallotStorageError(
                    f"Failed to persist ballot {address}",
                    details={"address": address, "error": str(exc)},
                ) from exc

        logger.debug(
            "Ballot state persisted",
            extra={"event": "ballot.storage.saved", "address": address},
        )

    def load(self, address: str) -> Dict[str, Any]:
        path = self._path(address)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError as exc:
            raise BallotStorageError(
                f"Ballot {address} not found",
                details={"address": address},
                recoverable=False,
            ) from exc
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "Failed to load ballot state",
                extra={"event": "ballot.storage.load_failed", "address": address, "error": str(exc)},
            )
            raise BallotStorageError(
                f"Failed to load ballot {address}",
                details={"address": address, "error": str(exc)},
            ) from exc

    def list_addresses(self) -> List[str]:
        addresses = []
        for filename in sorted(os.listdir(self.data_dir)):
            stem, ext = os.path.splitext(filename)
            if ext == ".json" and _ADDRESS_RE.match(stem):
                addresses.append(stem)
        return addresses
