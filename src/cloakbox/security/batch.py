"""Batch decryption with per-record failure isolation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Sequence, TypeVar

from cloakbox.core.exceptions import CloakBoxError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BatchFailure:
    index: int
    record_id: Optional[str]
    error: str


@dataclass
class BatchResult(Generic[T]):
    successes: List[T] = field(default_factory=list)
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.successes) + len(self.failures)


def _record_id(record: Any) -> Optional[str]:
    if isinstance(record, dict):
        value = record.get("_id") or record.get("id")
        return str(value) if value is not None else None
    return None


async def decrypt_batch(
    records: Sequence[Any],
    decrypt: Callable[[Any], T],
    *,
    label: str = "record",
) -> BatchResult[T]:
    """
    Run ``decrypt`` over every record, one task each.

    ``decrypt`` is a blocking function and runs off the event loop. A
    CloakBoxError from one record is logged and collected; siblings keep
    going. Successes keep the input order.
    """

    async def _one(index: int, record: Any):
        try:
            return index, await asyncio.to_thread(decrypt, record), None
        except CloakBoxError as exc:
            rid = _record_id(record)
            logger.warning("Failed to decrypt %s %s: %s", label, rid or f"#{index}", exc.__class__.__name__)
            return index, None, BatchFailure(index=index, record_id=rid, error=exc.__class__.__name__)

    outcomes = await asyncio.gather(*(_one(i, r) for i, r in enumerate(records)))

    result: BatchResult[T] = BatchResult()
    for _, value, failure in sorted(outcomes, key=lambda o: o[0]):
        if failure is None:
            result.successes.append(value)
        else:
            result.failures.append(failure)
    if result.failures:
        logger.info("Decrypted %d/%d %ss", len(result.successes), result.total, label)
    return result
