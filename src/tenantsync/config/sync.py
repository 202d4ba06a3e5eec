"""Synchronization defaults for tenant runs."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_bool, env_float, env_int

DEFAULT_WORKER_THREADS = 2
DEFAULT_BATCH_SIZE = 20
DEFAULT_LOGGING_INTERVAL = 100
DEFAULT_LOCK_TTL_SECONDS = 120.0
DEFAULT_LOCK_RETRIES = 10


@dataclass(frozen=True, slots=True)
class SyncConfig:
    worker_threads: int = DEFAULT_WORKER_THREADS
    batch_size: int = DEFAULT_BATCH_SIZE
    logging_interval: int = DEFAULT_LOGGING_INTERVAL
    allow_deletions: bool = True
    sync_delete: bool = True
    sync_when_missing_people_log_in: bool = True
    auto_create_people_on_login: bool = True
    lock_ttl: float = DEFAULT_LOCK_TTL_SECONDS
    # only used by on-demand runs, scheduled runs give up on contention
    lock_retry_wait: float = DEFAULT_LOCK_TTL_SECONDS
    lock_retries: int = DEFAULT_LOCK_RETRIES


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        worker_threads=env_int("TENANTSYNC_WORKER_THREADS", DEFAULT_WORKER_THREADS, minimum=1),
        batch_size=env_int("TENANTSYNC_BATCH_SIZE", DEFAULT_BATCH_SIZE, minimum=1),
        logging_interval=env_int(
            "TENANTSYNC_LOGGING_INTERVAL", DEFAULT_LOGGING_INTERVAL, minimum=1
        ),
        allow_deletions=env_bool("TENANTSYNC_ALLOW_DELETIONS", True),  # noqa: FBT003
        sync_delete=env_bool("TENANTSYNC_SYNC_DELETE", True),  # noqa: FBT003
        sync_when_missing_people_log_in=env_bool(
            "TENANTSYNC_SYNC_WHEN_MISSING_PEOPLE_LOG_IN",
            True,  # noqa: FBT003
        ),
        auto_create_people_on_login=env_bool(
            "TENANTSYNC_AUTO_CREATE_PEOPLE_ON_LOGIN",
            True,  # noqa: FBT003
        ),
        lock_ttl=env_float("TENANTSYNC_LOCK_TTL", DEFAULT_LOCK_TTL_SECONDS, minimum=1.0),
        lock_retry_wait=env_float(
            "TENANTSYNC_LOCK_RETRY_WAIT", DEFAULT_LOCK_TTL_SECONDS, minimum=0.0
        ),
        lock_retries=env_int("TENANTSYNC_LOCK_RETRIES", DEFAULT_LOCK_RETRIES, minimum=0),
    )
