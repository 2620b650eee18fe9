"""
Batched upsert execution.

Splits canonical records into fixed-size batches and submits every record
to a bounded worker pool. Each record is isolated: an exception is logged
with the record's natural key and counted as an error for its batch, and
never rejects the batch or the run.
"""

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any

from ..schemas import SyncStats

logger = logging.getLogger(__name__)

SYNC_BATCH_SIZE = 10


def chunk(records: Sequence[Any], size: int = SYNC_BATCH_SIZE) -> list[list[Any]]:
    """Partition records into consecutive batches of at most size items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(records[i : i + size]) for i in range(0, len(records), size)]


def dedupe_latest(records: Sequence[dict], key_field: str, label: str = "record") -> list[dict]:
    """
    Keep one record per natural key, the last one observed.

    Records sharing a key would otherwise be written concurrently and race
    for the stored values. The kept records stay in first-seen key order.
    """
    latest: dict[str, dict] = {}
    duplicates: list[str] = []
    for record in records:
        key = str(record.get(key_field))
        if key in latest:
            duplicates.append(key)
        latest[key] = record

    if duplicates:
        logger.warning(
            f"Dropped {len(duplicates)} duplicate {label} records: {sorted(set(duplicates))}",
            extra={"entity": label, "duplicate_keys": sorted(set(duplicates))},
        )
    return list(latest.values())


def _upsert_one(upsert_fn: Callable[[dict], bool], record: dict, key: str, label: str) -> bool:
    try:
        return upsert_fn(record)
    except Exception as e:
        logger.error(
            f"Error processing {label} {key}: {e}",
            extra={"entity": label, "key": key},
        )
        raise


def run_batches(
    records: Sequence[dict],
    upsert_fn: Callable[[dict], bool],
    key_field: str,
    *,
    batch_size: int = SYNC_BATCH_SIZE,
    executor: Executor | None = None,
    max_workers: int = 8,
    deadline: float | None = None,
    label: str = "record",
) -> tuple[SyncStats, list[str]]:
    """
    Upsert records in batches and aggregate per-batch counts.

    Records repeating a natural key are collapsed to the last occurrence
    before anything is written.

    Args:
        records: Canonical records, each holding its natural key under key_field
        upsert_fn: Writes one record, returns True if it was created
        key_field: Natural key field used in logs and the returned key list
        batch_size: Records per batch
        executor: Worker pool to submit to; a private pool is used when None
        max_workers: Size of the private pool
        deadline: time.monotonic() value after which pending work is cancelled
        label: Entity name for log messages

    Returns:
        Tuple of (aggregated stats, natural keys written successfully)
    """
    batches = chunk(dedupe_latest(records, key_field, label), batch_size)
    if not batches:
        return SyncStats(), []

    own_executor = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"upsert-{label}")

    try:
        submitted: list[list[tuple[str, Future]]] = []
        for batch in batches:
            submitted.append(
                [
                    (
                        str(record.get(key_field)),
                        pool.submit(_upsert_one, upsert_fn, record, str(record.get(key_field)), label),
                    )
                    for record in batch
                ]
            )

        all_futures = [future for batch in submitted for _, future in batch]
        timeout = None if deadline is None else max(0.0, deadline - time.monotonic())
        _, not_done = wait(all_futures, timeout=timeout)

        if not_done:
            logger.warning(f"Sync deadline reached with {len(not_done)} {label} upserts pending")
            for future in not_done:
                future.cancel()

        total = SyncStats()
        written: list[str] = []
        for index, batch in enumerate(submitted):
            batch_stats = SyncStats()
            for key, future in batch:
                if future in not_done or future.cancelled() or future.exception() is not None:
                    batch_stats.errors += 1
                    continue
                if future.result():
                    batch_stats.created += 1
                else:
                    batch_stats.updated += 1
                written.append(key)

            logger.debug(
                f"{label} batch {index + 1}/{len(submitted)}: "
                f"created={batch_stats.created}, updated={batch_stats.updated}, "
                f"errors={batch_stats.errors}"
            )
            total = total + batch_stats

        return total, written
    finally:
        if own_executor:
            pool.shutdown(wait=False, cancel_futures=True)
