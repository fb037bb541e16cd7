"""
ClickHouse adapter for the benchmarked-service capabilities.

Talks to the server over HTTP with clickhouse-connect. Inserts may be issued
from several loader threads at once, so each thread gets its own client; every
other statement comes from the orchestration thread.

Driver exceptions are translated into ``BenchmarkEnvironmentError`` here so
the core never sees driver types. Connection attempts retry with exponential
backoff via tenacity.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Generator, List, Mapping, Optional, Sequence

import clickhouse_connect
from clickhouse_connect.driver.client import Client
from clickhouse_connect.driver.exceptions import ClickHouseError, OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from schemabench.config import Settings, get_settings
from schemabench.errors import BenchmarkEnvironmentError
from schemabench.infrastructure.abstract import TableStorage
from schemabench.utils.logging import get_logger

log = get_logger(__name__)

CACHE_DROP_STATEMENTS = (
    "SYSTEM DROP MARK CACHE",
    "SYSTEM DROP UNCOMPRESSED CACHE",
    "SYSTEM DROP MMAP CACHE",
    "SYSTEM DROP COMPILED EXPRESSION CACHE",
)

QUERY_LOG_SQL = """
SELECT
    log_comment,
    read_rows,
    read_bytes,
    written_rows,
    written_bytes,
    result_rows,
    result_bytes,
    memory_usage,
    query_duration_ms,
    ProfileEvents['UserTimeMicroseconds'] AS user_time_us,
    ProfileEvents['SystemTimeMicroseconds'] AS system_time_us,
    ProfileEvents['RealTimeMicroseconds'] AS real_time_us,
    ProfileEvents['OSReadBytes'] AS os_read_bytes,
    ProfileEvents['OSWriteBytes'] AS os_write_bytes,
    ProfileEvents['SelectedParts'] AS selected_parts,
    ProfileEvents['SelectedMarks'] AS selected_marks,
    ProfileEvents['SelectedRows'] AS selected_rows
FROM system.query_log
WHERE type = 'QueryFinish'
  AND event_date >= yesterday()
  AND has({run_ids:Array(String)}, log_comment)
"""

TABLE_STORAGE_SQL = """
SELECT
    sum(rows) AS rows,
    sum(data_compressed_bytes) AS compressed_bytes,
    sum(data_uncompressed_bytes) AS uncompressed_bytes
FROM system.parts
WHERE active AND database = currentDatabase() AND table = {table:String}
"""


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)
def _connect(settings: Settings, host: str, port: int) -> Client:
    """
    Open a client with automatic retry on transient connection failures.
    """
    return clickhouse_connect.get_client(
        host=host,
        port=port,
        username=settings.ch_user,
        password=settings.ch_password,
        database=settings.ch_database,
        connect_timeout=settings.ch_connect_timeout_s,
        send_receive_timeout=settings.ch_query_timeout_s,
        autogenerate_session_id=False,
    )


class ClickHouseService:
    """
    ``BenchmarkService`` implementation backed by a ClickHouse server.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.host = host or self.settings.ch_host
        self.port = port or self.settings.ch_port
        self._local = threading.local()
        self._clients: List[Client] = []
        self._lock = threading.Lock()
        # fail fast if the server is unreachable
        self._client()

    def _client(self) -> Client:
        client = getattr(self._local, "client", None)
        if client is None:
            try:
                client = _connect(self.settings, self.host, self.port)
            except ClickHouseError as exc:
                raise BenchmarkEnvironmentError(
                    f"cannot connect to ClickHouse at {self.host}:{self.port}: {exc}"
                ) from exc
            self._local.client = client
            with self._lock:
                self._clients.append(client)
        return client

    @contextmanager
    def _statement(self, sql: str) -> Generator[Client, None, None]:
        client = self._client()
        try:
            yield client
        except ClickHouseError as exc:
            raise BenchmarkEnvironmentError(str(exc), statement=sql) from exc

    def _query_settings(self, run_id: Optional[str] = None) -> Dict[str, Any]:
        settings: Dict[str, Any] = {"max_execution_time": self.settings.ch_query_timeout_s}
        if run_id is not None:
            settings["log_comment"] = run_id
        return settings

    def execute(self, sql: str) -> None:
        with self._statement(sql) as client:
            client.command(sql)

    def drop_table(self, table: str) -> None:
        self.execute(f"DROP TABLE IF EXISTS `{table}` SYNC")

    def server_version(self) -> str:
        return str(self._client().server_version)

    def insert_rows(
        self, table: str, column_names: Sequence[str], rows: Sequence[Sequence[Any]]
    ) -> None:
        with self._statement(f"INSERT INTO {table}") as client:
            client.insert(table, rows, column_names=list(column_names))

    def optimize_table(self, table: str) -> None:
        self.execute(f"OPTIMIZE TABLE `{table}` FINAL")

    def table_storage(self, table: str) -> TableStorage:
        with self._statement(TABLE_STORAGE_SQL) as client:
            result = client.query(TABLE_STORAGE_SQL, parameters={"table": table})
        rows, compressed, uncompressed = result.result_rows[0] if result.result_rows else (0, 0, 0)
        return TableStorage(
            rows=int(rows or 0),
            compressed_bytes=int(compressed or 0),
            uncompressed_bytes=int(uncompressed or 0),
        )

    def drop_caches(self) -> None:
        for statement in CACHE_DROP_STATEMENTS:
            self.execute(statement)

    def run_query(self, sql: str, run_id: Optional[str] = None) -> List[tuple]:
        with self._statement(sql) as client:
            result = client.query(sql, settings=self._query_settings(run_id))
        return [tuple(row) for row in result.result_rows]

    def flush_logs(self) -> None:
        self.execute("SYSTEM FLUSH LOGS")

    def fetch_query_log(self, run_ids: Sequence[str]) -> Mapping[str, Dict[str, float]]:
        with self._statement(QUERY_LOG_SQL) as client:
            result = client.query(QUERY_LOG_SQL, parameters={"run_ids": list(run_ids)})
        entries: Dict[str, Dict[str, float]] = {}
        names = result.column_names[1:]
        for row in result.result_rows:
            entries[row[0]] = {name: value for name, value in zip(names, row[1:])}
        return entries

    def close(self) -> None:
        with self._lock:
            clients, self._clients = self._clients, []
        for client in clients:
            client.close()
        self._local = threading.local()


__all__ = ["CACHE_DROP_STATEMENTS", "ClickHouseService"]
