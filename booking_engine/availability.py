from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from operator import attrgetter
from threading import Lock
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from sortedcontainers import SortedKeyList

from .errors import InvalidDateRangeError, RangeConflictError
from .models import Booking, ReservationToken

logger = logging.getLogger(__name__)


def overlaps(start_a: date, end_a: date, start_b: date, end_b: date) -> bool:
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class PendingMove:
    """A date change whose old and new ranges are both held until it settles.

    ``held`` are the entries actually sitting in the calendar while the move
    is open: the old and new ranges, or their union when they overlap.
    """

    original: ReservationToken
    target: ReservationToken
    held: Tuple[ReservationToken, ...]


class _Calendar:
    """Non-overlapping ranges of one accommodation, kept sorted by check-in.

    Because held ranges never overlap, sorting by start also sorts by end, so
    a candidate range only has to be compared with its neighbours.
    """

    def __init__(self) -> None:
        self.lock = Lock()
        self._tokens = SortedKeyList(key=attrgetter("check_in"))

    def conflict(self, check_in: date, check_out: date, ignore: Optional[str] = None) -> Optional[ReservationToken]:
        index = self._tokens.bisect_key_right(check_in)
        # one skipped token can hide the real neighbour on the right
        for position in (index - 1, index, index + 1):
            if position < 0 or position >= len(self._tokens):
                continue
            held = self._tokens[position]
            if held.id == ignore:
                continue
            if overlaps(held.check_in, held.check_out, check_in, check_out):
                return held
            if held.check_in >= check_out:
                break
        return None

    def insert(self, token: ReservationToken) -> None:
        self._tokens.add(token)

    def remove(self, token: ReservationToken) -> bool:
        if token not in self._tokens:
            return False
        self._tokens.remove(token)
        return True

    def snapshot(self) -> List[ReservationToken]:
        return list(self._tokens)


class AvailabilityIndex:
    """Per-accommodation calendar of reserved ``[check_in, check_out)`` ranges.

    Every check-and-insert runs under the accommodation's own lock, so two
    callers racing for overlapping dates on the same accommodation can never
    both succeed. Different accommodations never contend.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._calendars: Dict[str, _Calendar] = {}

    def _calendar(self, accommodation_id: str) -> _Calendar:
        with self._registry_lock:
            calendar = self._calendars.get(accommodation_id)
            if calendar is None:
                calendar = _Calendar()
                self._calendars[accommodation_id] = calendar
            return calendar

    def query(self, accommodation_id: str, check_in: date, check_out: date) -> bool:
        _validate_range(check_in, check_out)
        calendar = self._calendar(accommodation_id)
        with calendar.lock:
            return calendar.conflict(check_in, check_out) is None

    def reserve(self, accommodation_id: str, check_in: date, check_out: date) -> ReservationToken:
        _validate_range(check_in, check_out)
        calendar = self._calendar(accommodation_id)
        with calendar.lock:
            if calendar.conflict(check_in, check_out) is not None:
                raise RangeConflictError()
            token = _new_token(accommodation_id, check_in, check_out)
            calendar.insert(token)
        logger.debug(
            "Range reserved",
            extra={"accommodation_id": accommodation_id, "token_id": token.id},
        )
        return token

    def release(self, accommodation_id: str, token: ReservationToken) -> bool:
        if token.accommodation_id != accommodation_id:
            return False
        calendar = self._calendar(accommodation_id)
        with calendar.lock:
            removed = calendar.remove(token)
        if removed:
            logger.debug(
                "Range released",
                extra={"accommodation_id": accommodation_id, "token_id": token.id},
            )
        return removed

    def begin_move(self, token: ReservationToken, check_in: date, check_out: date) -> PendingMove:
        """Hold new dates for ``token`` without giving up its current ones."""
        _validate_range(check_in, check_out)
        calendar = self._calendar(token.accommodation_id)
        with calendar.lock:
            if calendar.conflict(check_in, check_out, ignore=token.id) is not None:
                raise RangeConflictError()
            target = _new_token(token.accommodation_id, check_in, check_out)
            if overlaps(token.check_in, token.check_out, check_in, check_out):
                union = _new_token(
                    token.accommodation_id,
                    min(token.check_in, check_in),
                    max(token.check_out, check_out),
                )
                calendar.remove(token)
                calendar.insert(union)
                held: Tuple[ReservationToken, ...] = (union,)
            else:
                calendar.insert(target)
                held = (token, target)
        return PendingMove(original=token, target=target, held=held)

    def commit_move(self, pending: PendingMove) -> ReservationToken:
        calendar = self._calendar(pending.original.accommodation_id)
        with calendar.lock:
            for token in pending.held:
                calendar.remove(token)
            calendar.insert(pending.target)
        return pending.target

    def abort_move(self, pending: PendingMove) -> None:
        calendar = self._calendar(pending.original.accommodation_id)
        with calendar.lock:
            for token in pending.held:
                calendar.remove(token)
            calendar.insert(pending.original)

    def move(self, token: ReservationToken, check_in: date, check_out: date) -> ReservationToken:
        """Swap a held range for new dates; the old range stays held on conflict."""
        return self.commit_move(self.begin_move(token, check_in, check_out))

    def ranges(self, accommodation_id: str) -> List[ReservationToken]:
        calendar = self._calendar(accommodation_id)
        with calendar.lock:
            return calendar.snapshot()

    def restore(self, token: ReservationToken) -> None:
        """Re-insert a persisted token, keeping its id."""
        calendar = self._calendar(token.accommodation_id)
        with calendar.lock:
            if calendar.conflict(token.check_in, token.check_out) is not None:
                raise RangeConflictError(
                    f"persisted range {token.check_in}..{token.check_out} overlaps another booking"
                )
            calendar.insert(token)

    def rebuild(self, bookings: Iterable[Booking]) -> int:
        restored = 0
        for booking in bookings:
            if booking.reservation_token is None or not booking.status.blocks_availability:
                continue
            self.restore(booking.reservation_token)
            restored += 1
        return restored


def _new_token(accommodation_id: str, check_in: date, check_out: date) -> ReservationToken:
    return ReservationToken(
        id=f"rsv_{uuid4().hex[:12]}",
        accommodation_id=accommodation_id,
        check_in=check_in,
        check_out=check_out,
    )


def _validate_range(check_in: date, check_out: date) -> None:
    if check_in >= check_out:
        raise InvalidDateRangeError("check_out must be after check_in", field="check_out")
