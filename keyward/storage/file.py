"""
Encrypted single-file storage.

The whole namespace lives in memory and is mirrored to
``<directory>/<namespace>.json.enc`` as one AES-GCM blob holding a JSON
array. Every mutation re-encrypts and rewrites the entire file. The rewrite is
not crash-atomic: a crash mid-write can leave a truncated blob, which the next
load treats like any other undecryptable file.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from keyward.crypto import decrypt, encrypt
from keyward.errors import DecryptionError
from keyward.storage.base import StorageKind
from keyward.storage.memory import MemoryStorage

logger = logging.getLogger(__name__)


class FileStorage(MemoryStorage):
    kind = StorageKind.FILE

    def __init__(self, directory: Path | str, master_key: bytes, namespace: str = "default"):
        super().__init__(namespace)
        self.directory = Path(directory)
        self.path = self.directory / f"{namespace}.json.enc"
        self._key = master_key

    def _setup(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._records = {}
        if not self.path.exists():
            return

        try:
            records = json.loads(decrypt(self.path.read_bytes(), self._key))
        except (DecryptionError, json.JSONDecodeError, UnicodeDecodeError) as e:
            quarantine = self.path.with_name(self.path.name + ".corrupt")
            logger.error(
                "Storage file %s unreadable (%s); starting %s empty, old file kept at %s",
                self.path,
                e,
                self.namespace,
                quarantine,
            )
            self.path.replace(quarantine)
            return

        for record in records:
            if isinstance(record, dict) and "id" in record:
                self._records[record["id"]] = record
        logger.debug("Loaded %d records from %s", len(self._records), self.path)

    def _persist(self, records: dict[str, dict]) -> None:
        payload = json.dumps(list(records.values()), default=str)
        self.path.write_bytes(encrypt(payload, self._key))
