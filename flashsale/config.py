"""Configuration helpers for the flash sale runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_DEPLOY_URL = "https://mustache-plucker.deno.dev"


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, *, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_ids(name: str) -> frozenset[str]:
    raw = os.getenv(name) or ""
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class SchedulerConfig:
    sweep_interval: float = 5.0
    store_timeout: float = 10.0
    notify_timeout: float = 10.0
    quiesce_seconds: float = 10.0
    manager_ids: frozenset[str] = field(default_factory=frozenset)


def read_scheduler_config() -> SchedulerConfig:
    return SchedulerConfig(
        sweep_interval=env_float("SALE_SWEEP_SECONDS", default=5.0),
        store_timeout=env_float("SALE_STORE_TIMEOUT", default=10.0),
        notify_timeout=env_float("SALE_NOTIFY_TIMEOUT", default=10.0),
        quiesce_seconds=env_float("SALE_QUIESCE_SECONDS", default=10.0),
        manager_ids=env_ids("SALE_MANAGER_IDS"),
    )


@dataclass(frozen=True)
class SupervisorConfig:
    max_attempts: int = 5
    base_delay: float = 5.0
    max_delay: float = 300.0
    window: float = 60.0


def read_supervisor_config() -> SupervisorConfig:
    return SupervisorConfig(
        max_attempts=env_int("RECONNECT_MAX_ATTEMPTS", default=5) or 5,
        base_delay=env_float("RECONNECT_BASE_DELAY", default=5.0),
        max_delay=env_float("RECONNECT_MAX_DELAY", default=300.0),
        window=env_float("RECONNECT_WINDOW", default=60.0),
    )


@dataclass(frozen=True)
class SyncConfig:
    base_url: str
    token: str | None
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.token)


def read_sync_config() -> SyncConfig:
    return SyncConfig(
        base_url=(os.getenv("DEPLOY_URL") or DEFAULT_DEPLOY_URL).rstrip("/"),
        token=os.getenv("DEPLOY_SECRET") or None,
        timeout=env_float("DEPLOY_TIMEOUT", default=10.0),
    )


@dataclass(slots=True)
class EnvironmentConfig:
    discord_token: str
    sale_table_name: str
    aws_region: str
    log_level: str
    default_winner_count: int
    max_duration_days: int
    scheduler: SchedulerConfig
    supervisor: SupervisorConfig
    sync: SyncConfig

    @classmethod
    def load(cls) -> "EnvironmentConfig":
        missing: list[str] = []

        def need(name: str) -> str:
            value = os.getenv(name)
            if not value:
                missing.append(name)
                return ""
            return value

        discord_token = need("DISCORD_TOKEN")
        sale_table_name = need("SALE_TABLE_NAME")

        if missing:
            raise RuntimeError("Missing env vars: " + ", ".join(sorted(set(missing))))

        return cls(
            discord_token=discord_token,
            sale_table_name=sale_table_name,
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            default_winner_count=env_int("DEFAULT_WINNER_COUNT", default=3) or 3,
            max_duration_days=env_int("MAX_SALE_DURATION_DAYS", default=30) or 30,
            scheduler=read_scheduler_config(),
            supervisor=read_supervisor_config(),
            sync=read_sync_config(),
        )
