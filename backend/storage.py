"""
Key/value persistence adapters.

Both adapters expose get/set/delete/list over JSON-like values. Writes are
upserts: the last write to a key wins.
"""

import copy
import logging
import threading

from sqlalchemy.orm.attributes import flag_modified

from db import db
from errors import safe_storage_operation

logger = logging.getLogger(__name__)

QUOTE_KEY_PREFIX = 'quote:'


def quote_key(quote_id):
    return f"{QUOTE_KEY_PREFIX}{quote_id}"


class SqlStorageAdapter:
    """Storage rows in the user_storage table, scoped to one owner"""

    def __init__(self, owner):
        self.owner = owner

    def get(self, key):
        def _get():
            from models import StorageItem
            item = StorageItem.get_item(self.owner, key)
            return copy.deepcopy(item.storage_value) if item else None

        return safe_storage_operation(_get, f"Failed to read '{key}'", key)

    def set(self, key, value):
        def _set():
            from models import StorageItem
            item = StorageItem.get_item(self.owner, key)
            if item is None:
                item = StorageItem(self.owner, key, copy.deepcopy(value))
                db.session.add(item)
            else:
                item.storage_value = copy.deepcopy(value)
                flag_modified(item, 'storage_value')
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            logger.debug(f"Stored '{key}' for {self.owner}")
            return value

        return safe_storage_operation(_set, f"Failed to write '{key}'", key)

    def delete(self, key):
        def _delete():
            from models import StorageItem
            item = StorageItem.get_item(self.owner, key)
            if item is None:
                return False
            db.session.delete(item)
            try:
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return True

        return safe_storage_operation(_delete, f"Failed to delete '{key}'", key)

    def list(self, prefix=None):
        """Return {key: value} for every row of the owner, optionally filtered by key prefix"""
        def _list():
            from models import StorageItem
            query = StorageItem.query.filter_by(owner=self.owner)
            if prefix:
                query = query.filter(StorageItem.storage_key.startswith(prefix))
            return {
                item.storage_key: copy.deepcopy(item.storage_value)
                for item in query.order_by(StorageItem.id).all()
            }

        return safe_storage_operation(_list, "Failed to list stored values")


class MemoryStorageAdapter:
    """In-process dict store; values are copied in and out"""

    def __init__(self, initial=None):
        self._lock = threading.Lock()
        self._values = copy.deepcopy(initial) if initial else {}

    def get(self, key):
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    def set(self, key, value):
        with self._lock:
            self._values[key] = copy.deepcopy(value)
        return value

    def delete(self, key):
        with self._lock:
            return self._values.pop(key, None) is not None

    def list(self, prefix=None):
        with self._lock:
            return {
                key: copy.deepcopy(value)
                for key, value in self._values.items()
                if not prefix or key.startswith(prefix)
            }
