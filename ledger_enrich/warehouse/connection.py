"""
Connection pool for the PostgreSQL row store.

PostgresRowStore issues every read through ``execute_query`` and every write
through ``execute_command``; each command commits on its own, so one
row-store write is one database transaction. Rows come back as dicts.
Settings fall back to DB_HOST, DB_PORT, DB_NAME, DB_USER and DB_PASSWORD.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.conninfo import make_conninfo
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from ledger_enrich.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    psycopg_pool wrapper shared by the row store and the CLI.

    The pool is created lazily by ``open`` (or ``with pool:``) and retried a
    few times, since the database container is often still starting when a
    run or test session begins.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 4,
        timeout: float = 30.0,
    ) -> None:
        """
        Args:
            host, port, database, user, password: Connection settings; DB_* when omitted
            min_size: Connections kept open
            max_size: Upper bound; a sequential run needs very few
            timeout: Seconds to wait for a connection (also the connect timeout)

        Raises:
            ValueError: If no password is given or set in DB_PASSWORD
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "ledger")
        self.user = user or os.getenv("DB_USER", "enrich")
        password = password or os.getenv("DB_PASSWORD")
        if not password:
            raise ValueError("Database password must be provided (argument or DB_PASSWORD)")

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.conninfo = make_conninfo(
            host=self.host,
            port=self.port,
            dbname=self.database,
            user=self.user,
            password=password,
            connect_timeout=int(timeout),
        )
        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Create and fill the pool; a no-op when already open.

        Raises:
            OperationalError: If the database is unreachable after ``max_retries`` attempts
        """
        if self._pool is not None:
            return

        attempt = 0
        while True:
            attempt += 1
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
            except OperationalError as e:
                pool.close()
                if attempt >= max_retries:
                    raise OperationalError(
                        f"Could not reach {self.database} at {self.host}:{self.port} "
                        f"after {attempt} attempts: {e}"
                    ) from e
                logger.warning(f"Database not reachable (attempt {attempt}/{max_retries}): {e}")
                time.sleep(retry_delay)
                continue

            self._pool = pool
            logger.info(f"Connection pool open: {self.database} at {self.host}:{self.port}")
            return

    def close(self) -> None:
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Borrow a connection; it goes back to the pool when the block ends.

        Raises:
            RuntimeError: If the pool is not open
        """
        if self._pool is None:
            raise RuntimeError(f"Connection pool for {self.database} is not open")
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        with self.get_connection() as conn, conn.cursor() as cur:
            yield cur

    def execute_query(self, query, params: tuple | dict | None = None) -> list[dict]:
        """Run a SELECT (string or psycopg.sql.Composed) and return its rows."""
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command, params: tuple | dict | None = None) -> int:
        """Run and commit a DDL or DML statement; returns the affected row count."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                affected = cur.rowcount
            conn.commit()
        return affected

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
