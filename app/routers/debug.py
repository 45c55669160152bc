"""Debug endpoints for time travel. Mounted only when DEBUG is on."""
from datetime import timedelta

from fastapi import APIRouter
from pydantic import BaseModel, Field

from app.utils.clock import clock


router = APIRouter(prefix="/debug", tags=["debug"])


class ClockAdvance(BaseModel):
    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0)
    minutes: int = Field(default=0, ge=0)


@router.post("/clock/advance")
async def advance_clock(request: ClockAdvance):
    """Move the service clock forward."""
    now = clock.advance(timedelta(days=request.days, hours=request.hours, minutes=request.minutes))
    return {"now": now.isoformat(), "offset_seconds": clock.offset.total_seconds()}


@router.post("/clock/reset")
async def reset_clock():
    """Return the service clock to real time."""
    clock.reset()
    return {"now": clock.now().isoformat(), "offset_seconds": 0}
