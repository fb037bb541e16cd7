"""
Lifecycle of the benchmarked service instance.

A ClickHouse server is started as a labelled Docker container for one scenario
run and removed afterwards. ``service_guard`` is the single point of
acquisition: it yields a connected service and guarantees exactly one release
attempt on every exit path (normal return, exception, KeyboardInterrupt).

Containers carry a label naming the run, so containers left behind by a
crashed run can be found and removed by ``find_orphans``/``remove_containers``.
"""

from __future__ import annotations

import socket
import subprocess
import uuid
from contextlib import closing, contextmanager
from dataclasses import dataclass
from typing import Callable, Generator, List, Optional, Sequence

import psutil
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_delay, wait_fixed

from schemabench.config import Settings, get_settings
from schemabench.errors import BenchmarkEnvironmentError
from schemabench.infrastructure.abstract import BenchmarkService
from schemabench.utils.logging import get_logger

log = get_logger(__name__)

ServiceFactory = Callable[[str, int], BenchmarkService]


@dataclass(frozen=True)
class ContainerHandle:
    container_id: str
    name: str
    host: str
    port: int


def _docker(args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
    cmd = ["docker", *args]
    try:
        result = subprocess.run(cmd, check=False, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
    except FileNotFoundError as exc:
        raise BenchmarkEnvironmentError("docker executable not found") from exc
    if check and result.returncode != 0:
        raise BenchmarkEnvironmentError(
            f"{' '.join(cmd[:2])} failed ({result.returncode}): {result.stderr.strip()}"
        )
    return result


def free_disk_bytes(path: str) -> int:
    """Available disk space at ``path``."""
    return psutil.disk_usage(path).free


def _free_port() -> int:
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def start_container(settings: Settings, run_label: str) -> ContainerHandle:
    name = f"{settings.container_prefix}-{uuid.uuid4().hex[:8]}"
    port = _free_port()
    result = _docker(
        [
            "run",
            "-d",
            "--name",
            name,
            "--label",
            f"{settings.container_label}={run_label}",
            "--ulimit",
            "nofile=262144:262144",
            "-e",
            f"CLICKHOUSE_USER={settings.ch_user}",
            "-e",
            f"CLICKHOUSE_PASSWORD={settings.ch_password}",
            "-p",
            f"127.0.0.1:{port}:8123",
            settings.container_image,
        ]
    )
    handle = ContainerHandle(container_id=result.stdout.strip(), name=name, host="127.0.0.1", port=port)
    log.info("Container started", extra={"container": name, "port": port, "image": settings.container_image})
    return handle


def stop_container(handle: ContainerHandle) -> None:
    _docker(["rm", "-f", "-v", handle.container_id])
    log.info("Container removed", extra={"container": handle.name})


def find_orphans(settings: Optional[Settings] = None) -> List[str]:
    """Names of containers carrying the run label, left behind by earlier runs."""
    settings = settings or get_settings()
    result = _docker(["ps", "-a", "--filter", f"label={settings.container_label}", "--format", "{{.Names}}"])
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def remove_containers(names: Sequence[str]) -> None:
    if names:
        _docker(["rm", "-f", "-v", *names])


def wait_for_service(factory: ServiceFactory, host: str, port: int, timeout_s: int) -> BenchmarkService:
    """Poll until the service accepts connections or ``timeout_s`` elapses."""
    retrying = Retrying(
        stop=stop_after_delay(timeout_s),
        wait=wait_fixed(1),
        retry=retry_if_exception_type(BenchmarkEnvironmentError),
    )
    try:
        for attempt in retrying:
            with attempt:
                return factory(host, port)
    except RetryError as exc:
        raise BenchmarkEnvironmentError(
            f"service at {host}:{port} not healthy after {timeout_s}s"
        ) from exc
    raise BenchmarkEnvironmentError(f"service at {host}:{port} never became healthy")


@contextmanager
def service_guard(
    settings: Settings,
    factory: ServiceFactory,
    run_label: str,
    tables: Sequence[str] = (),
) -> Generator[BenchmarkService, None, None]:
    """
    Acquire a healthy service instance for one scenario run and release it exactly once.

    With ``settings.external_service`` the configured server is used as-is and
    release only drops the scenario's tables.
    """
    handle: Optional[ContainerHandle] = None
    service: Optional[BenchmarkService] = None
    try:
        if settings.external_service:
            service = wait_for_service(factory, settings.ch_host, settings.ch_port, settings.health_timeout_s)
        else:
            handle = start_container(settings, run_label)
            service = wait_for_service(factory, handle.host, handle.port, settings.health_timeout_s)
        yield service
    finally:
        _release(service, handle, tables)


def _release(
    service: Optional[BenchmarkService],
    handle: Optional[ContainerHandle],
    tables: Sequence[str],
) -> None:
    try:
        if service is not None:
            if handle is None:
                for table in tables:
                    try:
                        service.drop_table(table)
                    except BenchmarkEnvironmentError:
                        log.exception("Failed to drop table during release", extra={"table": table})
            service.close()
    finally:
        if handle is not None:
            try:
                stop_container(handle)
            except BenchmarkEnvironmentError:
                log.exception(
                    "Failed to remove container; remove it with `schemabench sweep`",
                    extra={"container": handle.name},
                )


__all__ = [
    "ContainerHandle",
    "ServiceFactory",
    "find_orphans",
    "free_disk_bytes",
    "remove_containers",
    "service_guard",
    "start_container",
    "stop_container",
    "wait_for_service",
]
