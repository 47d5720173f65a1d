import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request
from pydantic import AwareDatetime, BaseModel, Field, model_validator

from eventmed.config import Settings, get_settings
from eventmed.database import InMemoryKeyValueDatabase
from eventmed.logging import register_middleware, setup_logging
from eventmed.models import (
    Notification,
    RepeatPolicy,
    Role,
    Shift,
    ShiftSlot,
    StaffMember,
    VitalsSnapshot,
    check_unique_slot_ids,
)
from eventmed.news2 import (
    compute_news2,
    news2_breakdown,
    risk_band,
    score_observations,
)
from eventmed.notifier import assignment_message, send_notification
from eventmed.roles import is_manager
from eventmed.rota import (
    RepeatWindowError,
    SlotNotFound,
    assign_staff,
    biddable_slots,
    cancel_bid,
    declare_unavailability,
    new_shift_id,
    place_bid,
    repeat_shift,
    shifts_for_staff,
    shifts_in_range,
)

logger = logging.getLogger(__name__)

router = APIRouter()

Database = InMemoryKeyValueDatabase[str, Shift | StaffMember | Notification]


class News2Response(BaseModel):
    score: int | None
    band: str
    colour: str
    breakdown: dict[str, int] | None


class ShiftInput(BaseModel):
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
    def check_shape(self) -> "ShiftInput":
        if self.end <= self.start:
            raise ValueError("shift end must be after its start")
        if not self.is_unavailability and not self.slots:
            raise ValueError("A shift must have at least one role slot.")
        check_unique_slot_ids(self.slots)
        return self


class AssignRequest(BaseModel):
    actor_uid: str
    staff_uid: str | None = None


class BidRequest(BaseModel):
    uid: str


class UnavailabilityRequest(BaseModel):
    start: AwareDatetime
    end: AwareDatetime
    reason: str | None = None

    @model_validator(mode="after")
    def end_after_start(self) -> "UnavailabilityRequest":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self


class BiddableShift(BaseModel):
    shift: Shift
    slot_ids: list[str]


def _db(request: Request) -> Database:
    return request.app.state.database


def _get_shift(db: Database, shift_id: str) -> Shift:
    shift = db.get(f"shift:{shift_id}")
    if not shift or not isinstance(shift, Shift):
        raise HTTPException(status_code=404, detail="Shift not found")
    return shift


def _get_staff(db: Database, uid: str) -> StaffMember:
    staff = db.get(f"staff:{uid}")
    if not staff or not isinstance(staff, StaffMember):
        raise HTTPException(status_code=404, detail="Staff member not found")
    return staff


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _slot_or_404(shift: Shift, slot_id: str) -> ShiftSlot:
    slot = shift.slot(slot_id)
    if slot is None:
        raise HTTPException(status_code=404, detail="Slot not found")
    return slot


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/news2", response_model=News2Response)
async def score_vitals(vitals: VitalsSnapshot) -> News2Response:
    score = compute_news2(vitals)
    breakdown = news2_breakdown(vitals)
    band = risk_band(score)
    return News2Response(
        score=score, band=band.label, colour=band.colour, breakdown=breakdown
    )


@router.post("/news2/observations", response_model=list[VitalsSnapshot])
async def score_vitals_series(
    observations: list[VitalsSnapshot],
) -> list[VitalsSnapshot]:
    return score_observations(observations)


@router.post("/shifts", response_model=Shift, status_code=201)
async def create_shift(payload: ShiftInput, request: Request) -> Shift:
    db = _db(request)
    shift = Shift(id=new_shift_id(), **payload.model_dump())
    db.put(f"shift:{shift.id}", shift)
    logger.info("created shift %s (%d slots)", shift.id, len(shift.slots))
    return shift


@router.get("/shifts", response_model=list[Shift])
async def list_shifts(
    request: Request,
    start: Annotated[datetime | None, Query()] = None,
    end: Annotated[datetime | None, Query()] = None,
) -> list[Shift]:
    shifts = [s for s in _db(request).collection("shift") if isinstance(s, Shift)]
    return shifts_in_range(
        shifts,
        _as_utc(start or datetime.min),
        _as_utc(end or datetime.max),
    )


@router.get("/shifts/{shift_id}", response_model=Shift)
async def get_shift(shift_id: str, request: Request) -> Shift:
    return _get_shift(_db(request), shift_id)


@router.put("/shifts/{shift_id}", response_model=Shift)
async def update_shift(
    shift_id: str, payload: ShiftInput, request: Request
) -> Shift:
    db = _db(request)
    _get_shift(db, shift_id)
    shift = Shift(id=shift_id, **payload.model_dump())
    db.put(f"shift:{shift_id}", shift)
    return shift


@router.delete("/shifts/{shift_id}", status_code=204)
async def delete_shift(shift_id: str, request: Request) -> None:
    db = _db(request)
    _get_shift(db, shift_id)
    db.delete(f"shift:{shift_id}")


@router.post("/shifts/{shift_id}/slots/{slot_id}/assign", response_model=Shift)
async def assign_slot(
    shift_id: str, slot_id: str, payload: AssignRequest, request: Request
) -> Shift:
    db = _db(request)
    actor = _get_staff(db, payload.actor_uid)
    if not is_manager(actor.role):
        raise HTTPException(
            status_code=403,
            detail="User must be a Manager or Admin to assign staff",
        )
    staff = _get_staff(db, payload.staff_uid) if payload.staff_uid else None
    _get_shift(db, shift_id)

    def mutate(shift: Shift) -> Shift:
        try:
            assign_staff(shift, slot_id, staff)
        except SlotNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return shift

    shift = db.transaction(f"shift:{shift_id}", mutate)

    # notifications go out after the write has landed
    if staff is not None:
        await send_notification(
            db,
            staff.uid,
            assignment_message(shift),
            link=request.app.state.settings.assignment_link_template.format(
                shift_id=shift_id
            ),
            created_at=request.app.state.now_fn(),
        )
    return shift


@router.post("/shifts/{shift_id}/slots/{slot_id}/bids")
async def bid_on_slot(
    shift_id: str, slot_id: str, payload: BidRequest, request: Request
) -> dict:
    db = _db(request)
    staff = _get_staff(db, payload.uid)
    _get_shift(db, shift_id)
    now = request.app.state.now_fn()

    def mutate(shift: Shift) -> None:
        try:
            if place_bid(shift, slot_id, staff, now):
                return
        except SlotNotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

        slot = shift.slot(slot_id)
        if slot.assigned_staff is not None:
            raise HTTPException(
                status_code=409, detail="This slot is already assigned"
            )
        raise HTTPException(
            status_code=403,
            detail=f"Role does not meet slot requirement {slot.role_required}",
        )

    db.transaction(f"shift:{shift_id}", mutate)
    return {"status": "bid_placed", "shift_id": shift_id, "slot_id": slot_id}


@router.delete("/shifts/{shift_id}/slots/{slot_id}/bids/{uid}")
async def withdraw_bid(
    shift_id: str, slot_id: str, uid: str, request: Request
) -> dict:
    db = _db(request)
    _get_shift(db, shift_id)

    def mutate(shift: Shift) -> bool:
        _slot_or_404(shift, slot_id)
        return cancel_bid(shift, slot_id, uid)

    removed = db.transaction(f"shift:{shift_id}", mutate)
    return {"shift_id": shift_id, "slot_id": slot_id, "removed": removed}


@router.post("/shifts/{shift_id}/repeat", status_code=201)
async def repeat(shift_id: str, policy: RepeatPolicy, request: Request) -> dict:
    db = _db(request)
    template = _get_shift(db, shift_id)
    try:
        instances = repeat_shift(
            template, policy, request.app.state.settings.tz
        )
    except RepeatWindowError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    for shift in instances:
        db.put(f"shift:{shift.id}", shift)
    return {
        "template_id": shift_id,
        "created": len(instances),
        "shift_ids": [s.id for s in instances],
    }


@router.post(
    "/staff/{uid}/unavailability", response_model=Shift, status_code=201
)
async def mark_unavailable(
    uid: str, payload: UnavailabilityRequest, request: Request
) -> Shift:
    db = _db(request)
    staff = _get_staff(db, uid)
    shift = declare_unavailability(
        staff, payload.start, payload.end, payload.reason
    )
    db.put(f"shift:{shift.id}", shift)
    return shift


@router.get("/staff/{uid}/shifts", response_model=list[Shift])
async def staff_shifts(
    uid: str,
    request: Request,
    year: Annotated[int, Query(ge=1970)],
    month: Annotated[int, Query(ge=1, le=12)],
) -> list[Shift]:
    db = _db(request)
    _get_staff(db, uid)
    shifts = [s for s in db.collection("shift") if isinstance(s, Shift)]
    return shifts_for_staff(
        shifts, uid, year, month, request.app.state.settings.tz
    )


@router.get("/staff/{uid}/biddable", response_model=list[BiddableShift])
async def staff_biddable(uid: str, request: Request) -> list[BiddableShift]:
    db = _db(request)
    staff = _get_staff(db, uid)
    result = []
    for shift in db.collection("shift"):
        if not isinstance(shift, Shift):
            continue
        slots = biddable_slots(shift, staff)
        if slots:
            result.append(
                BiddableShift(shift=shift, slot_ids=[s.id for s in slots])
            )
    result.sort(key=lambda b: b.shift.start)
    return result


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title=settings.app_title)
    db: Database = InMemoryKeyValueDatabase()
    app.state.database = db
    app.state.settings = settings

    app.state.now_fn = lambda: datetime.now(UTC)

    changes = logging.getLogger("eventmed.changes")
    db.subscribe(
        lambda key, value: changes.debug(
            "%s %s", key, "deleted" if value is None else "written"
        )
    )

    register_middleware(app)
    app.include_router(router)
    return app
