"""
SQLite connection lifecycle: context manager with guaranteed close and foreign_keys=ON.
Every store operation opens its own short-lived connection; no locks outlive a call.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Union


@contextmanager
def sqlite_conn(db_path: Union[str, Path], timeout_s: float = 5.0) -> Generator[sqlite3.Connection, None, None]:
    """
    Yield a SQLite connection that is always closed on exit.
    Enables PRAGMA foreign_keys=ON at open for referential integrity.
    timeout_s bounds how long a writer waits on a locked database.
    """
    path = str(Path(db_path).resolve())
    conn = sqlite3.connect(path, timeout=timeout_s)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA foreign_keys = ON")
        conn.commit()
        yield conn
    finally:
        conn.close()
