#!/usr/bin/env python3
"""
Pooled PostgreSQL access for the ticket store.

The pool opens on first use, so importing the package (or running the unit
tests) never touches the network. Prepared statements are switched off on
every pooled connection; the store is often deployed behind pgbouncer.
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator, List, Optional

import psycopg
from psycopg import conninfo as pg_conninfo
from psycopg.pq import TransactionStatus
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from .secure_config import DatabaseConfig, get_database_config

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns one connection pool and hands out transactions and cursors"""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or get_database_config()
        self.pool: Optional[ConnectionPool] = None
        self._pool_lock = Lock()

    def _configure(self, connection: psycopg.Connection):
        connection.prepare_threshold = None
        if self.config.schema:
            connection.execute(f'SET search_path TO "{self.config.schema}"')
            connection.commit()

    def setup_connection_pool(self) -> ConnectionPool:
        with self._pool_lock:
            if self.pool is None:
                dsn = pg_conninfo.make_conninfo(**self.config.to_dict())
                try:
                    self.pool = ConnectionPool(
                        conninfo=dsn,
                        min_size=1,
                        max_size=self.config.pool_size,
                        timeout=self.config.timeout,
                        configure=self._configure,
                        name="trac_sync_pool",
                        open=True,
                    )
                except psycopg.Error as exc:
                    logger.error(f"Could not open pool for {self.config.get_connection_string()}: {exc}")
                    raise
                logger.info(f"Opened PostgreSQL pool ({self.config.pool_size} max) for "
                            f"{self.config.get_connection_string()}")
            return self.pool

    @contextmanager
    def get_connection(self, autocommit: bool = False) -> Iterator[psycopg.Connection]:
        """
        Borrow a pooled connection.

        Without autocommit the block runs in one transaction: committed when
        the block exits normally, rolled back when it raises.
        """
        with self.setup_connection_pool().connection() as conn:
            conn.autocommit = autocommit
            try:
                yield conn
                if not autocommit:
                    conn.commit()
            except Exception:
                if not autocommit:
                    conn.rollback()
                raise
            finally:
                # the pool refuses connections left mid-transaction
                if conn.info.transaction_status == TransactionStatus.IDLE:
                    conn.autocommit = False

    @contextmanager
    def dedicated_connection(self) -> Iterator[psycopg.Connection]:
        """
        Open an autocommit connection outside the pool.

        Session-scoped state such as advisory locks lives here so a long run
        never ties up a pool slot the run itself needs.
        """
        conn = psycopg.connect(pg_conninfo.make_conninfo(**self.config.to_dict()), autocommit=True)
        try:
            conn.prepare_threshold = None
            if self.config.schema:
                conn.execute(f'SET search_path TO "{self.config.schema}"')
            yield conn
        finally:
            conn.close()

    @contextmanager
    def get_cursor(self, dictionary: bool = False, autocommit: bool = False) -> Iterator[psycopg.Cursor]:
        """Cursor inside a get_connection() transaction; dict rows on request"""
        cursor_kwargs = {"row_factory": dict_row} if dictionary else {}
        with self.get_connection(autocommit=autocommit) as conn:
            with conn.cursor(**cursor_kwargs) as cur:
                yield cur

    def fetch_all(self, query: str, params: Optional[tuple] = None, dictionary: bool = False) -> List[Any]:
        with self.get_cursor(dictionary=dictionary) as cur:
            cur.execute(query, params or ())
            return cur.fetchall()

    def execute(self, query: str, params: Optional[tuple] = None) -> int:
        """Run a statement and return the affected row count"""
        with self.get_cursor() as cur:
            cur.execute(query, params or ())
            return cur.rowcount

    def ping(self) -> bool:
        try:
            return self.fetch_all("SELECT 1") == [(1,)]
        except psycopg.Error as e:
            logger.error(f"Database ping failed: {e}")
            return False

    def close_pool(self):
        with self._pool_lock:
            if self.pool is not None:
                self.pool.close()
                self.pool = None
                logger.info("PostgreSQL pool closed")


_default_manager: Optional[DatabaseManager] = None
_default_lock = Lock()


def get_database_manager() -> DatabaseManager:
    """Process-wide manager built from the loaded configuration"""
    global _default_manager
    with _default_lock:
        if _default_manager is None:
            _default_manager = DatabaseManager()
        return _default_manager
