"""
Process-level settings for schemabench.

Uses Pydantic Settings to load environment variables for the ClickHouse
connection, the container lifecycle, logging, and benchmark defaults. Scenario
definitions themselves live in YAML and are handled by ``config_loader``.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # ClickHouse
    ch_host: str = Field("localhost", alias="CH_HOST")
    ch_port: int = Field(8123, alias="CH_PORT")
    ch_user: str = Field("default", alias="CH_USER")
    ch_password: str = Field("", alias="CH_PASSWORD")
    ch_database: str = Field("default", alias="CH_DATABASE")
    ch_connect_timeout_s: int = Field(10, alias="CH_CONNECT_TIMEOUT_S")
    ch_query_timeout_s: int = Field(600, alias="CH_QUERY_TIMEOUT_S")

    # Container lifecycle
    external_service: bool = Field(False, alias="EXTERNAL_SERVICE")
    container_image: str = Field("clickhouse/clickhouse-server:latest", alias="CONTAINER_IMAGE")
    container_prefix: str = Field("schemabench", alias="CONTAINER_PREFIX")
    container_label: str = Field("schemabench.run", alias="CONTAINER_LABEL")
    health_timeout_s: int = Field(60, alias="HEALTH_TIMEOUT_S")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    results_dir: str = Field("results", alias="RESULTS_DIR")

    # Benchmark defaults
    load_workers: int = Field(4, alias="LOAD_WORKERS")
    disk_probe_path: str = Field(".", alias="DISK_PROBE_PATH")
    disk_headroom_ratio: float = Field(1.5, alias="DISK_HEADROOM_RATIO")
    diff_row_limit: int = Field(5, alias="DIFF_ROW_LIMIT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
