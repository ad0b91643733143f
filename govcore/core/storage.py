from __future__ import annotations

import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from govcore.core.errors import StoreError


class SqliteStore:
    """
    Shared sqlite plumbing for the governance stores.

    NOTES:
    - one short-lived connection per operation (WAL), guarded by a per-store lock
    - sqlite errors surface as StoreError; callers decide whether to degrade
    """

    def __init__(self, *, db_path: str):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        with self._session() as conn:
            self._init_schema(conn)

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        raise NotImplementedError

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """
        One transaction: commit on success, rollback on any error.
        """
        with self._lock:
            try:
                conn = self._conn()
            except sqlite3.Error as e:
                raise StoreError(db_path=self.db_path, error=str(e)) from e
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreError(db_path=self.db_path, error=str(e)) from e
            except BaseException:
                conn.rollback()
                raise
            finally:
                conn.close()
