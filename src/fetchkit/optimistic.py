"""OptimisticUpdateController - apply locally, confirm remotely, roll back."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Generic, TypeVar

from fetchkit.errors import FetchKitError, classify_error
from fetchkit.types import OptimisticRecord, Status

T = TypeVar("T")

logger = logging.getLogger(__name__)


class OptimisticUpdateController(Generic[T]):
    """Shows a speculative value while ``confirm_fn`` runs.

    The baseline only changes when a confirmation succeeds (or through
    ``reset``). Every update is a compare-and-swap on the record version,
    so an update that was overtaken by a newer one never touches the
    newer pending value.
    """

    def __init__(
        self, initial: T, confirm_fn: Callable[[T], Awaitable[T]]
    ) -> None:
        self._confirm_fn = confirm_fn
        self._record: OptimisticRecord[T] = OptimisticRecord(
            baseline=initial, pending=initial
        )
        self._error: FetchKitError | None = None
        self._status = Status.IDLE

    @property
    def record(self) -> OptimisticRecord[T]:
        return self._record

    @property
    def data(self) -> T:
        """The pending value while an update is in flight, else the baseline."""
        if self._record.is_pending:
            return self._record.pending
        return self._record.baseline

    @property
    def is_pending(self) -> bool:
        return self._record.is_pending

    @property
    def error(self) -> FetchKitError | None:
        return self._error

    @property
    def status(self) -> Status:
        return self._status

    async def perform_optimistic_update(self, new_value: T) -> T:
        """Apply ``new_value`` now and return the confirmed result.

        Raises:
            FetchKitError: When confirmation fails; the baseline is restored
        """
        applied = replace(
            self._record,
            pending=new_value,
            is_pending=True,
            version=self._record.version + 1,
        )
        self._record = applied
        self._error = None
        self._status = Status.LOADING

        try:
            confirmed = await self._confirm_fn(new_value)
        except asyncio.CancelledError:
            self._rollback(applied, None)
            raise
        except Exception as exc:
            error = classify_error(exc)
            self._rollback(applied, error)
            if error is exc:
                raise
            raise error from exc

        current = self._record
        if current.version == applied.version:
            self._record = replace(
                current,
                baseline=confirmed,
                pending=confirmed,
                is_pending=False,
                version=current.version + 1,
            )
            self._status = Status.SUCCESS
        else:
            # A newer update is pending; adopt the confirmation as its baseline
            self._record = replace(current, baseline=confirmed)
        return confirmed

    def reset(self, value: T) -> None:
        """Adopt an externally confirmed value and drop anything pending."""
        self._record = OptimisticRecord(
            baseline=value, pending=value, version=self._record.version + 1
        )
        self._error = None
        self._status = Status.IDLE

    def _rollback(
        self, applied: OptimisticRecord[T], error: FetchKitError | None
    ) -> None:
        if self._record.version != applied.version:
            return
        current = self._record
        self._record = replace(
            current,
            pending=current.baseline,
            is_pending=False,
            version=current.version + 1,
        )
        self._error = error
        self._status = Status.ERROR if error is not None else Status.IDLE
        logger.warning("Optimistic update rolled back: %s", error or "cancelled")
