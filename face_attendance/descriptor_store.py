"""
Descriptor Store Module

Persistent mapping from identity to one enrolled face embedding.
Every mutation is written to disk before returning, atomically, so a call
either fully succeeds or leaves the previous database untouched.
"""

import json
import logging
import os
import pickle
import tempfile
import threading
import numpy as np
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .embeddings import EMBEDDING_SIZE, EmbeddingLike, as_embedding
from .errors import InvalidEmbeddingError, StoreReadError, StoreWriteError

logger = logging.getLogger(__name__)

DATABASE_VERSION = '1.0'


@dataclass(frozen=True, eq=False)
class EnrolledDescriptor:
    """Face embedding enrolled for one identity."""
    identity_id: str
    display_name: str
    embedding: np.ndarray
    enrolled_at: datetime
    last_updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation used for the database file and JSON export."""
        return {
            'identity_id': self.identity_id,
            'display_name': self.display_name,
            'embedding': self.embedding.tolist(),
            'enrolled_at': self.enrolled_at.isoformat(),
            'last_updated_at': self.last_updated_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnrolledDescriptor':
        """
        Rebuild a descriptor from its plain representation.

        Raises:
            InvalidEmbeddingError: If the embedding is malformed
            KeyError, TypeError, ValueError: If other fields are missing or invalid
        """
        identity_id = data['identity_id']
        if not isinstance(identity_id, str) or not identity_id:
            raise ValueError(f"Invalid identity id: {identity_id!r}")

        return cls(
            identity_id=identity_id,
            display_name=str(data.get('display_name', '')),
            embedding=as_embedding(data['embedding']),
            enrolled_at=datetime.fromisoformat(data['enrolled_at']),
            last_updated_at=datetime.fromisoformat(data['last_updated_at'])
        )


class DescriptorStore:
    """File-backed store of enrolled face descriptors, one per identity."""

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize descriptor store.

        Args:
            config: Configuration dictionary with storage settings
        """
        self.config = config
        self.storage_config = config.get('storage', {})
        self.database_file = self.storage_config.get('database_file', 'data/face_descriptors.pkl')

        self._descriptors: Dict[str, EnrolledDescriptor] = {}
        self._file_signature: Optional[Tuple[int, int]] = None
        self._lock = threading.RLock()

        self._ensure_directories()

        if self.load_database():
            logger.info(f"Descriptor store ready with {len(self._descriptors)} descriptors")

    def _ensure_directories(self):
        """Create the database directory if it doesn't exist."""
        directory = os.path.dirname(self.database_file)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def put(self, identity_id: str, display_name: str, embedding: EmbeddingLike) -> bool:
        """
        Enroll or replace the descriptor of an identity.

        Args:
            identity_id: Identity the embedding belongs to
            display_name: Name shown when the identity is recognized
            embedding: Face embedding of EMBEDDING_SIZE values

        Returns:
            True if the descriptor was persisted
        """
        if not isinstance(identity_id, str) or not identity_id:
            logger.error(f"Invalid identity id: {identity_id!r}")
            return False

        try:
            vector = as_embedding(embedding)
        except InvalidEmbeddingError as e:
            logger.error(f"Rejected descriptor for {identity_id}: {e}")
            return False

        with self._lock:
            if not self.load_database():
                return False

            previous = dict(self._descriptors)
            existing = self._descriptors.get(identity_id)
            now = datetime.now()

            self._descriptors[identity_id] = EnrolledDescriptor(
                identity_id=identity_id,
                display_name=display_name,
                embedding=vector,
                enrolled_at=existing.enrolled_at if existing else now,
                last_updated_at=now
            )

            if not self._commit(previous):
                return False

        logger.info(f"Saved descriptor for {display_name}")
        return True

    def get(self, identity_id: str) -> Optional[EnrolledDescriptor]:
        """Get the descriptor of an identity, or None if not enrolled."""
        with self._lock:
            if not self.load_database():
                return None
            return self._descriptors.get(identity_id)

    def has(self, identity_id: str) -> bool:
        """Check whether an identity has an enrolled face."""
        return self.get(identity_id) is not None

    def remove(self, identity_id: str) -> bool:
        """
        Delete the descriptor of an identity.

        Returns:
            True if a descriptor was removed, False if not found or not persisted
        """
        with self._lock:
            if not self.load_database():
                return False

            if identity_id not in self._descriptors:
                return False

            previous = dict(self._descriptors)
            del self._descriptors[identity_id]

            if not self._commit(previous):
                return False

        logger.info(f"Deleted descriptor for identity {identity_id}")
        return True

    def all(self) -> List[EnrolledDescriptor]:
        """
        All enrolled descriptors.

        The order is only meant for display. An unreadable database yields
        an empty list.
        """
        with self._lock:
            if not self.load_database():
                return []
            return list(self._descriptors.values())

    def count(self) -> int:
        """Number of enrolled identities."""
        return len(self.all())

    def clear(self) -> bool:
        """Remove every descriptor."""
        with self._lock:
            previous = dict(self._descriptors)
            self._descriptors = {}

            if not self._commit(previous):
                return False

        logger.info("Cleared descriptor database")
        return True

    def export_json(self) -> Optional[str]:
        """
        Serialize all descriptors as JSON.

        Returns:
            JSON text, or None if the database could not be read
        """
        with self._lock:
            if not self.load_database():
                return None
            return json.dumps([d.to_dict() for d in self._descriptors.values()], indent=2)

    def import_json(self, json_data: str) -> bool:
        """
        Replace the whole database with descriptors from exported JSON.

        Every entry is validated before anything is replaced.

        Args:
            json_data: Text produced by export_json

        Returns:
            True if imported and persisted
        """
        try:
            entries = json.loads(json_data)
            if not isinstance(entries, list):
                raise ValueError("Expected a list of descriptors")
            imported = [EnrolledDescriptor.from_dict(entry) for entry in entries]
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Error importing database: {e}")
            return False

        with self._lock:
            previous = dict(self._descriptors)
            self._descriptors = {d.identity_id: d for d in imported}

            if not self._commit(previous):
                return False

        logger.info(f"Imported {len(self._descriptors)} descriptors")
        return True

    def load_database(self) -> bool:
        """
        Reload the database file if it changed since the last read.

        Returns:
            True if the in-memory descriptors are current
        """
        with self._lock:
            try:
                self._reload_if_changed()
                return True
            except StoreReadError as e:
                logger.error(f"Error loading database: {e}")
                return False

    def _reload_if_changed(self):
        try:
            stat = os.stat(self.database_file)
        except FileNotFoundError:
            if self._file_signature is not None:
                logger.warning(f"Database file {self.database_file} disappeared")
                self._descriptors = {}
                self._file_signature = None
            return
        except OSError as e:
            raise StoreReadError(f"Cannot access {self.database_file}: {e}") from e

        signature = (stat.st_mtime_ns, stat.st_size)
        if signature == self._file_signature:
            return

        try:
            with open(self.database_file, 'rb') as f:
                data = pickle.load(f)
            descriptors = {}
            for entry in data.get('descriptors', []):
                descriptor = EnrolledDescriptor.from_dict(entry)
                descriptors[descriptor.identity_id] = descriptor
        except Exception as e:
            raise StoreReadError(f"Corrupt database {self.database_file}: {e}") from e

        self._descriptors = descriptors
        self._file_signature = signature
        logger.debug(f"Loaded {len(descriptors)} descriptors from {self.database_file}")

    def _commit(self, previous: Dict[str, EnrolledDescriptor]) -> bool:
        """Persist the current descriptors, restoring `previous` on failure."""
        try:
            self._write_database()
            return True
        except StoreWriteError as e:
            self._descriptors = previous
            logger.error(f"Error saving database: {e}")
            return False

    def _write_database(self):
        data = {
            'version': DATABASE_VERSION,
            'embedding_dim': EMBEDDING_SIZE,
            'save_timestamp': datetime.now().isoformat(),
            'descriptors': [d.to_dict() for d in self._descriptors.values()]
        }

        directory = os.path.dirname(os.path.abspath(self.database_file))
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
            with os.fdopen(fd, 'wb') as f:
                pickle.dump(data, f)
            os.replace(tmp_path, self.database_file)
            tmp_path = None
            stat = os.stat(self.database_file)
        except (OSError, pickle.PicklingError) as e:
            raise StoreWriteError(f"Cannot write {self.database_file}: {e}") from e
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

        self._file_signature = (stat.st_mtime_ns, stat.st_size)

    def get_statistics(self) -> Dict[str, Any]:
        """Get database statistics."""
        descriptors = self.all()
        stats = {
            'total_descriptors': len(descriptors),
            'embedding_dimension': EMBEDDING_SIZE,
            'database_file': self.database_file
        }

        if descriptors:
            stats.update({
                'first_enrolled': min(d.enrolled_at for d in descriptors).isoformat(),
                'last_updated': max(d.last_updated_at for d in descriptors).isoformat()
            })

        return stats
