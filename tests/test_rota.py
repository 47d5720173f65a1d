from datetime import UTC, date, datetime, timedelta
from itertools import count
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from eventmed.models import (
    Bid,
    RepeatPolicy,
    Role,
    Shift,
    ShiftSlot,
    ShiftStatus,
    StaffMember,
    StaffRef,
)
from eventmed.rota import (
    RepeatWindowError,
    SlotNotFound,
    assign_staff,
    biddable_slots,
    can_bid,
    cancel_bid,
    declare_unavailability,
    derive_status,
    eligible_staff,
    place_bid,
    repeat_shift,
    shifts_for_staff,
    shifts_in_range,
)

NOW = datetime(2025, 7, 1, 12, 0, tzinfo=UTC)

alice = StaffMember(uid="alice", name="Alice Ongwele", role=Role.PARAMEDIC)
wei = StaffMember(uid="wei", name="Wei Yan", role=Role.FIRST_AIDER)
barry = StaffMember(uid="barry", name="Barry Kozumikov", role=Role.WELFARE)


def _shift(slot_count: int = 3, **kwargs) -> Shift:
    defaults = {
        "id": "shift-1",
        "event_name": "County Show",
        "location": "Main arena",
        # a Monday
        "start": datetime(2025, 7, 7, 9, 0, tzinfo=UTC),
        "end": datetime(2025, 7, 7, 17, 0, tzinfo=UTC),
        "notes": "Bring sun cream",
        "slots": [
            ShiftSlot(id=f"slot-{i}", role_required=Role.FIRST_AIDER)
            for i in range(slot_count)
        ],
    }
    return Shift(**{**defaults, **kwargs})


def _ids():
    counter = count(1)
    return lambda: f"copy-{next(counter)}"


@pytest.mark.parametrize(
    ("filled", "status"),
    [
        (0, ShiftStatus.OPEN),
        (2, ShiftStatus.PARTIALLY_ASSIGNED),
        (3, ShiftStatus.FILLED),
    ],
)
def test_status_follows_slot_fill(filled: int, status: ShiftStatus) -> None:
    shift = _shift()
    for slot in shift.slots[:filled]:
        slot.assigned_staff = StaffRef(uid=f"u-{slot.id}", name="x")
    assert derive_status(shift.slots) == status
    assert shift.status == status


def test_shift_without_slots_is_open() -> None:
    assert derive_status([]) == ShiftStatus.OPEN


def test_status_cannot_be_set_directly() -> None:
    shift = _shift()
    with pytest.raises((AttributeError, ValueError)):
        shift.status = ShiftStatus.FILLED  # type: ignore[misc]


def test_stored_status_is_ignored_on_load() -> None:
    data = _shift().model_dump(mode="json")
    data["status"] = "Filled"
    data["all_assigned_staff_uids"] = ["ghost"]

    shift = Shift.model_validate(data)

    assert shift.status == ShiftStatus.OPEN
    assert shift.all_assigned_staff_uids == []


def test_end_must_follow_start() -> None:
    with pytest.raises(ValidationError):
        _shift(end=datetime(2025, 7, 7, 8, 0, tzinfo=UTC))


def test_slot_rejects_repeated_bidder() -> None:
    bid = Bid(uid="wei", name="Wei Yan", timestamp=NOW)
    with pytest.raises(ValidationError):
        ShiftSlot(id="a", role_required=Role.FIRST_AIDER, bids=[bid, bid])


def test_assigned_slot_drops_bids_on_load() -> None:
    slot = ShiftSlot(
        id="a",
        role_required=Role.FIRST_AIDER,
        assigned_staff=alice.ref(),
        bids=[Bid(uid="wei", name="Wei Yan", timestamp=NOW)],
    )
    assert slot.bids == []


def test_shift_rejects_repeated_slot_ids() -> None:
    with pytest.raises(ValidationError):
        _shift(
            slots=[
                ShiftSlot(id="a", role_required=Role.FIRST_AIDER),
                ShiftSlot(id="a", role_required=Role.PARAMEDIC),
            ]
        )


def test_assign_clears_bids_and_updates_derived_fields() -> None:
    shift = _shift()
    place_bid(shift, "slot-0", wei, NOW)
    place_bid(shift, "slot-0", alice, NOW)
    assert len(shift.slot("slot-0").bids) == 2

    slot = assign_staff(shift, "slot-0", alice)

    assert slot.assigned_staff == StaffRef(uid="alice", name="Alice Ongwele")
    assert slot.bids == []
    assert shift.all_assigned_staff_uids == ["alice"]
    assert shift.status == ShiftStatus.PARTIALLY_ASSIGNED


def test_reassign_and_unassign() -> None:
    shift = _shift(slot_count=1)
    assign_staff(shift, "slot-0", alice)
    assert shift.status == ShiftStatus.FILLED

    assign_staff(shift, "slot-0", wei.ref())
    assert shift.all_assigned_staff_uids == ["wei"]

    assign_staff(shift, "slot-0", None)
    assert shift.slot("slot-0").assigned_staff is None
    assert shift.slot("slot-0").bids == []
    assert shift.all_assigned_staff_uids == []
    assert shift.status == ShiftStatus.OPEN


def test_assigned_uids_match_slots_in_order() -> None:
    shift = _shift()
    assign_staff(shift, "slot-2", wei)
    assign_staff(shift, "slot-0", alice)
    assert shift.all_assigned_staff_uids == ["alice", "wei"]


def test_assign_unknown_slot() -> None:
    with pytest.raises(SlotNotFound):
        assign_staff(_shift(), "nope", alice)


def test_bid_requires_open_slot_and_role() -> None:
    shift = _shift(
        slots=[ShiftSlot(id="para", role_required=Role.PARAMEDIC)]
    )
    assert place_bid(shift, "para", wei, NOW) is False
    assert shift.slot("para").bids == []

    assert place_bid(shift, "para", alice, NOW) is True
    assert shift.slot("para").bids == [
        Bid(uid="alice", name="Alice Ongwele", timestamp=NOW)
    ]


def test_bid_on_assigned_slot_is_refused() -> None:
    shift = _shift(slot_count=1)
    assign_staff(shift, "slot-0", alice)
    assert can_bid(shift.slot("slot-0"), wei) is False
    assert place_bid(shift, "slot-0", wei, NOW) is False
    assert shift.slot("slot-0").bids == []


def test_rebidding_keeps_single_bid() -> None:
    shift = _shift(slot_count=1)
    assert place_bid(shift, "slot-0", wei, NOW)
    assert place_bid(shift, "slot-0", wei, NOW + timedelta(minutes=5))
    assert [b.uid for b in shift.slot("slot-0").bids] == ["wei"]
    assert shift.slot("slot-0").bids[0].timestamp == NOW


def test_cancel_bid_removes_only_callers_bid() -> None:
    shift = _shift(slot_count=1)
    place_bid(shift, "slot-0", wei, NOW)
    place_bid(shift, "slot-0", alice, NOW)

    assert cancel_bid(shift, "slot-0", "wei") is True
    assert [b.uid for b in shift.slot("slot-0").bids] == ["alice"]


def test_cancel_missing_bid_is_noop() -> None:
    shift = _shift(slot_count=1)
    place_bid(shift, "slot-0", alice, NOW)
    before = list(shift.slot("slot-0").bids)

    assert cancel_bid(shift, "slot-0", "nobody") is False
    assert shift.slot("slot-0").bids == before


def test_biddable_slots_and_eligible_staff() -> None:
    shift = _shift(
        slots=[
            ShiftSlot(id="fa", role_required=Role.FIRST_AIDER),
            ShiftSlot(id="para", role_required=Role.PARAMEDIC),
            ShiftSlot(id="welfare", role_required=Role.WELFARE),
        ]
    )
    assert [s.id for s in biddable_slots(shift, wei)] == ["fa"]
    assert [s.id for s in biddable_slots(shift, alice)] == ["fa", "para"]
    assert [s.id for s in biddable_slots(shift, barry)] == ["welfare"]

    assign_staff(shift, "fa", alice)
    assert [m.uid for m in eligible_staff(shift, "para", [alice, wei, barry])] == []
    assert [m.uid for m in eligible_staff(shift, "fa", [alice, wei, barry])] == [
        "alice",
        "wei",
    ]


def test_unavailability_block() -> None:
    start = datetime(2025, 7, 10, 0, 0, tzinfo=UTC)
    block = declare_unavailability(
        alice, start, start + timedelta(hours=23, minutes=59), "Holiday"
    )

    assert block.is_unavailability
    assert block.unavailability_reason == "Holiday"
    assert block.all_assigned_staff_uids == ["alice"]
    assert block.status == ShiftStatus.FILLED
    assert block.slots[0].role_required == Role.PARAMEDIC
    assert biddable_slots(block, wei) == []


def test_unavailability_for_manager_uses_first_aider_slot() -> None:
    boss = StaffMember(uid="boss", name="Boss", role=Role.MANAGER)
    block = declare_unavailability(
        boss, NOW, NOW + timedelta(hours=1), shift_id="fixed"
    )
    assert block.id == "fixed"
    assert block.slots[0].role_required == Role.FIRST_AIDER


def test_shift_queries() -> None:
    monday = _shift(id="mon")
    tuesday = _shift(
        id="tue",
        start=datetime(2025, 7, 8, 9, 0, tzinfo=UTC),
        end=datetime(2025, 7, 8, 17, 0, tzinfo=UTC),
    )
    august = _shift(
        id="aug",
        start=datetime(2025, 8, 1, 9, 0, tzinfo=UTC),
        end=datetime(2025, 8, 1, 17, 0, tzinfo=UTC),
    )
    for s in (monday, august):
        assign_staff(s, "slot-0", wei)

    in_range = shifts_in_range(
        [tuesday, august, monday],
        datetime(2025, 7, 7, 12, 0, tzinfo=UTC),
        datetime(2025, 7, 8, 23, 0, tzinfo=UTC),
    )
    assert [s.id for s in in_range] == ["mon", "tue"]

    mine = shifts_for_staff([tuesday, august, monday], "wei", 2025, 7)
    assert [s.id for s in mine] == ["mon"]


def test_weekly_repeat_on_mondays() -> None:
    template = _shift()
    assign_staff(template, "slot-0", alice)
    place_bid(template, "slot-1", wei, NOW)
    policy = RepeatPolicy(
        frequency="weekly", weekdays={0}, until=date(2025, 7, 28)
    )

    copies = repeat_shift(template, policy, id_fn=_ids())

    assert [c.start for c in copies] == [
        datetime(2025, 7, 14, 9, 0, tzinfo=UTC),
        datetime(2025, 7, 21, 9, 0, tzinfo=UTC),
        datetime(2025, 7, 28, 9, 0, tzinfo=UTC),
    ]
    assert [c.id for c in copies] == ["copy-1", "copy-2", "copy-3"]
    for copy in copies:
        assert copy.end - copy.start == timedelta(hours=8)
        assert copy.status == ShiftStatus.OPEN
        assert copy.all_assigned_staff_uids == []
        assert all(s.assigned_staff is None and s.bids == [] for s in copy.slots)
        assert [s.id for s in copy.slots] == ["slot-0", "slot-1", "slot-2"]
        assert copy.notes == template.notes
        assert copy.start.date() != template.start.date()

    # template untouched
    assert template.all_assigned_staff_uids == ["alice"]
    assert len(template.slot("slot-1").bids) == 1


def test_weekly_repeat_several_weekdays() -> None:
    policy = RepeatPolicy(
        frequency="weekly", weekdays={0, 2, 4}, until=date(2025, 7, 14)
    )
    copies = repeat_shift(_shift(), policy)
    assert [c.start.date() for c in copies] == [
        date(2025, 7, 9),
        date(2025, 7, 11),
        date(2025, 7, 14),
    ]


def test_monthly_repeat_clamps_to_month_end() -> None:
    template = _shift(
        start=datetime(2025, 8, 31, 9, 0, tzinfo=UTC),
        end=datetime(2025, 8, 31, 17, 0, tzinfo=UTC),
    )
    policy = RepeatPolicy(frequency="monthly", until=date(2025, 10, 31))

    copies = repeat_shift(template, policy)

    assert [c.start.date() for c in copies] == [
        date(2025, 9, 30),
        date(2025, 10, 31),
    ]


def test_monthly_repeat_into_february() -> None:
    template = _shift(
        start=datetime(2026, 1, 31, 18, 0, tzinfo=UTC),
        end=datetime(2026, 1, 31, 23, 0, tzinfo=UTC),
    )
    policy = RepeatPolicy(frequency="monthly", until=date(2026, 3, 15))
    copies = repeat_shift(template, policy)
    assert [c.start.date() for c in copies] == [date(2026, 2, 28)]


def test_repeat_keeps_local_wall_clock_across_dst() -> None:
    london = ZoneInfo("Europe/London")
    template = _shift(
        start=datetime(2025, 10, 20, 9, 0, tzinfo=london),
        end=datetime(2025, 10, 20, 17, 0, tzinfo=london),
    )
    policy = RepeatPolicy(
        frequency="weekly", weekdays={0}, until=date(2025, 10, 27)
    )

    (copy,) = repeat_shift(template, policy, london)

    assert copy.start.astimezone(london).hour == 9
    assert copy.start.astimezone(UTC).hour == 9
    assert template.start.astimezone(UTC).hour == 8


@pytest.mark.parametrize("until", [date(2025, 7, 7), date(2025, 7, 1)])
def test_repeat_window_must_end_after_template(until: date) -> None:
    policy = RepeatPolicy(frequency="monthly", until=until)
    with pytest.raises(RepeatWindowError):
        repeat_shift(_shift(), policy)


def test_weekly_policy_needs_weekdays() -> None:
    with pytest.raises(ValidationError):
        RepeatPolicy(frequency="weekly", until=date(2025, 8, 1))
    with pytest.raises(ValidationError):
        RepeatPolicy(frequency="weekly", weekdays={7}, until=date(2025, 8, 1))
