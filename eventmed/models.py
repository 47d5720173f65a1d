"""
Domain models for the rota and clinical observation records.
"""

from collections.abc import Iterable
from datetime import date, datetime
from enum import StrEnum
from typing import Literal

from pydantic import (
    AwareDatetime,
    BaseModel,
    Field,
    computed_field,
    field_validator,
    model_validator,
)


class Role(StrEnum):
    PENDING = "Pending"
    FIRST_AIDER = "First Aider"
    FREC3 = "FREC3"
    FREC4_ECA = "FREC4/ECA"
    FREC5_EMT_AAP = "FREC5/EMT/AAP"
    PARAMEDIC = "Paramedic"
    NURSE = "Nurse"
    DOCTOR = "Doctor"
    WELFARE = "Welfare"
    ADMIN = "Admin"
    MANAGER = "Manager"


class Consciousness(StrEnum):
    ALERT = "Alert"
    CONFUSED = "Confused"
    VOICE = "Voice"
    PAIN = "Pain"
    UNRESPONSIVE = "Unresponsive"


class ShiftStatus(StrEnum):
    OPEN = "Open"
    PARTIALLY_ASSIGNED = "Partially Assigned"
    FILLED = "Filled"


class VitalsSnapshot(BaseModel):
    """
    One set of observations as entered on a patient report form.

    Form inputs arrive as strings, so an empty string is treated the same
    as a missing value.
    """

    time: str | None = None
    respiratory_rate: int | None = None
    spo2: int | None = None
    on_oxygen: bool = False
    blood_pressure: str | None = None  # "sys/dia"
    heart_rate: int | None = None
    consciousness: Consciousness | None = None
    temperature: float | None = None
    news2: int | None = None

    @field_validator(
        "time",
        "respiratory_rate",
        "spo2",
        "blood_pressure",
        "heart_rate",
        "consciousness",
        "temperature",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("on_oxygen", mode="before")
    @classmethod
    def missing_oxygen_is_false(cls, value: object) -> object:
        return False if value is None or value == "" else value


class StaffMember(BaseModel):
    uid: str
    name: str
    role: Role | None = None
    phone: str | None = None

    def ref(self) -> "StaffRef":
        return StaffRef(uid=self.uid, name=self.name)


class StaffRef(BaseModel):
    uid: str
    name: str


class Bid(BaseModel):
    uid: str
    name: str
    timestamp: datetime


class ShiftSlot(BaseModel):
    id: str
    role_required: Role
    assigned_staff: StaffRef | None = None
    bids: list[Bid] = Field(default_factory=list)

    @model_validator(mode="after")
    def bids_are_consistent(self) -> "ShiftSlot":
        # an assigned slot takes no bids
        if self.assigned_staff is not None:
            self.bids = []
        uids = [b.uid for b in self.bids]
        if len(uids) != len(set(uids)):
            raise ValueError(
                f"slot {self.id} has more than one bid per staff member"
            )
        return self


def derive_status(slots: Iterable[ShiftSlot]) -> ShiftStatus:
    slots = list(slots)
    filled = sum(1 for s in slots if s.assigned_staff is not None)
    if filled == 0:
        return ShiftStatus.OPEN
    if filled < len(slots):
        return ShiftStatus.PARTIALLY_ASSIGNED
    return ShiftStatus.FILLED


def assigned_staff_uids(slots: Iterable[ShiftSlot]) -> list[str]:
    return [s.assigned_staff.uid for s in slots if s.assigned_staff is not None]


def check_unique_slot_ids(slots: Iterable[ShiftSlot]) -> None:
    seen: set[str] = set()
    for slot in slots:
        if slot.id in seen:
            raise ValueError(f"duplicate slot id {slot.id}")
        seen.add(slot.id)


class Shift(BaseModel):
    id: str
    event_id: str | None = None
    event_name: str = ""
    location: str = ""
    start: AwareDatetime
    end: AwareDatetime
    role_required: Role | None = None
    notes: str = ""
    slots: list[ShiftSlot] = Field(default_factory=list)
    is_unavailability: bool = False
    unavailability_reason: str | None = None

    @model_validator(mode="after")
    def check_shape(self) -> "Shift":
        if self.end <= self.start:
            raise ValueError("shift end must be after its start")
        check_unique_slot_ids(self.slots)
        return self

    # derived from slots on every read so stored copies can't drift
    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> ShiftStatus:
        return derive_status(self.slots)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_assigned_staff_uids(self) -> list[str]:
        return assigned_staff_uids(self.slots)

    def slot(self, slot_id: str) -> ShiftSlot | None:
        return next((s for s in self.slots if s.id == slot_id), None)


class RepeatPolicy(BaseModel):
    frequency: Literal["weekly", "monthly"]
    weekdays: set[int] = Field(default_factory=set)  # Monday=0 .. Sunday=6
    until: date

    @field_validator("weekdays")
    @classmethod
    def weekdays_in_range(cls, value: set[int]) -> set[int]:
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("weekdays must be between 0 (Monday) and 6")
        return value

    @model_validator(mode="after")
    def weekly_needs_days(self) -> "RepeatPolicy":
        if self.frequency == "weekly" and not self.weekdays:
            raise ValueError("weekly repetition needs at least one weekday")
        return self


class Notification(BaseModel):
    id: str
    user_id: str
    message: str
    link: str | None = None
    read: bool = False
    created_at: datetime
