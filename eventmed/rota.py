"""
Shift slot assignment, bidding and repetition rules.

Everything here works on plain model instances. Persistence and
notifications are the caller's job.
"""

import calendar
import logging
import uuid
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, date, datetime, timedelta, tzinfo

from eventmed.models import (
    Bid,
    RepeatPolicy,
    Role,
    Shift,
    ShiftSlot,
    StaffMember,
    StaffRef,
)
from eventmed.models import assigned_staff_uids, derive_status  # noqa: F401
from eventmed.roles import OVERRIDE_ROLES, is_role_or_higher

logger = logging.getLogger(__name__)

UNAVAILABILITY_SLOT_ID = "unavailability-slot"


class RotaError(Exception):
    pass


class SlotNotFound(RotaError, LookupError):
    def __init__(self, shift_id: str, slot_id: str) -> None:
        super().__init__(f"Slot {slot_id} not found on shift {shift_id}")
        self.shift_id = shift_id
        self.slot_id = slot_id


class RepeatWindowError(RotaError, ValueError):
    pass


def new_shift_id() -> str:
    return uuid.uuid4().hex


def _find_slot(shift: Shift, slot_id: str) -> ShiftSlot:
    slot = shift.slot(slot_id)
    if slot is None:
        raise SlotNotFound(shift.id, slot_id)
    return slot


def assign_staff(
    shift: Shift, slot_id: str, staff: StaffRef | StaffMember | None
) -> ShiftSlot:
    """
    Put ``staff`` on a slot, or clear it when ``staff`` is None.

    Any outstanding bids on the slot are dropped either way; after an
    unassignment staff have to bid again.
    """
    slot = _find_slot(shift, slot_id)
    if isinstance(staff, StaffMember):
        staff = staff.ref()

    previous = slot.assigned_staff
    slot.assigned_staff = staff
    slot.bids = []

    logger.info(
        "shift %s slot %s: %s -> %s (status=%s)",
        shift.id,
        slot_id,
        previous.uid if previous else None,
        staff.uid if staff else None,
        shift.status,
    )
    return slot


def can_bid(slot: ShiftSlot, staff: StaffMember) -> bool:
    return slot.assigned_staff is None and is_role_or_higher(
        staff.role, slot.role_required
    )


def place_bid(
    shift: Shift, slot_id: str, staff: StaffMember, now: datetime
) -> bool:
    """
    Record ``staff``'s interest in an open slot.

    Returns True when the slot holds the caller's bid afterwards, including
    when they had already bid. Returns False if the slot is assigned or the
    caller's role doesn't qualify.
    """
    slot = _find_slot(shift, slot_id)
    if not can_bid(slot, staff):
        return False
    if any(b.uid == staff.uid for b in slot.bids):
        return True

    slot.bids.append(Bid(uid=staff.uid, name=staff.name, timestamp=now))
    logger.info("shift %s slot %s: bid from %s", shift.id, slot_id, staff.uid)
    return True


def cancel_bid(shift: Shift, slot_id: str, uid: str) -> bool:
    """Withdraw ``uid``'s bid. Returns False if there was nothing to remove."""
    slot = _find_slot(shift, slot_id)
    remaining = [b for b in slot.bids if b.uid != uid]
    removed = len(remaining) != len(slot.bids)
    slot.bids = remaining
    if removed:
        logger.info("shift %s slot %s: bid withdrawn by %s", shift.id, slot_id, uid)
    return removed


def biddable_slots(shift: Shift, staff: StaffMember) -> list[ShiftSlot]:
    if shift.is_unavailability:
        return []
    return [s for s in shift.slots if can_bid(s, staff)]


def eligible_staff(
    shift: Shift, slot_id: str, staff: Iterable[StaffMember]
) -> list[StaffMember]:
    """Staff qualified for the slot and not already working another slot."""
    slot = _find_slot(shift, slot_id)
    elsewhere = {
        s.assigned_staff.uid
        for s in shift.slots
        if s.id != slot_id and s.assigned_staff is not None
    }
    return [
        m
        for m in staff
        if is_role_or_higher(m.role, slot.role_required)
        and m.uid not in elsewhere
    ]


def declare_unavailability(
    staff: StaffMember,
    start: datetime,
    end: datetime,
    reason: str | None = None,
    *,
    shift_id: str | None = None,
) -> Shift:
    """Build a block with a single slot already assigned to ``staff``."""
    role = staff.role
    if role is None or role in OVERRIDE_ROLES or role == Role.PENDING:
        role = Role.FIRST_AIDER

    return Shift(
        id=shift_id or new_shift_id(),
        event_name="Unavailable",
        start=start,
        end=end,
        is_unavailability=True,
        unavailability_reason=reason,
        slots=[
            ShiftSlot(
                id=UNAVAILABILITY_SLOT_ID,
                role_required=role,
                assigned_staff=staff.ref(),
            )
        ],
    )


def shifts_in_range(
    shifts: Iterable[Shift], start: datetime, end: datetime
) -> list[Shift]:
    """Shifts overlapping [start, end], ordered by start time."""
    return sorted(
        (s for s in shifts if s.start <= end and s.end >= start),
        key=lambda s: s.start,
    )


def shifts_for_staff(
    shifts: Iterable[Shift],
    uid: str,
    year: int,
    month: int,
    tz: tzinfo = UTC,
) -> list[Shift]:
    def in_month(s: Shift) -> bool:
        local = s.start.astimezone(tz)
        return local.year == year and local.month == month

    return sorted(
        (s for s in shifts if uid in s.all_assigned_staff_uids and in_month(s)),
        key=lambda s: s.start,
    )


def _weekly_dates(first: date, policy: RepeatPolicy) -> Iterator[date]:
    day = first + timedelta(days=1)
    while day <= policy.until:
        if day.weekday() in policy.weekdays:
            yield day
        day += timedelta(days=1)


def _monthly_dates(first: date, policy: RepeatPolicy) -> Iterator[date]:
    offset = 1
    while True:
        year, month0 = divmod(first.month - 1 + offset, 12)
        year += first.year
        month = month0 + 1
        if date(year, month, 1) > policy.until:
            return
        last_day = calendar.monthrange(year, month)[1]
        day = date(year, month, min(first.day, last_day))
        if day <= policy.until:
            yield day
        offset += 1


def repeat_shift(
    template: Shift,
    policy: RepeatPolicy,
    tz: tzinfo = UTC,
    *,
    id_fn: Callable[[], str] = new_shift_id,
) -> list[Shift]:
    """
    Generate copies of ``template`` according to ``policy``.

    Dates are worked out in ``tz`` so each copy keeps the template's
    wall-clock start time and its duration. The template's own date is
    never repeated. Every copy starts Open with no assignments or bids.
    """
    out_tz = template.start.tzinfo or tz
    local_start = (
        template.start.astimezone(tz)
        if template.start.tzinfo
        else template.start.replace(tzinfo=tz)
    )
    first = local_start.date()
    if policy.until <= first:
        raise RepeatWindowError(
            "End date must be after the original shift date."
        )

    duration = template.end - template.start
    dates = (
        _weekly_dates(first, policy)
        if policy.frequency == "weekly"
        else _monthly_dates(first, policy)
    )

    instances = []
    for day in dates:
        start = datetime.combine(day, local_start.time(), tzinfo=tz)
        instances.append(
            template.model_copy(
                update={
                    "id": id_fn(),
                    "start": start.astimezone(out_tz),
                    "end": (start + duration).astimezone(out_tz),
                    "slots": [
                        slot.model_copy(
                            update={"assigned_staff": None, "bids": []}
                        )
                        for slot in template.slots
                    ],
                }
            )
        )

    logger.info(
        "repeated shift %s %s until %s: %d instances",
        template.id,
        policy.frequency,
        policy.until,
        len(instances),
    )
    return instances
