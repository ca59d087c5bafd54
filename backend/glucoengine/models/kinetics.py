from dataclasses import dataclass
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from glucoengine.models.treatment import Treatment

CARE_PORTAL = "Care Portal"


class KineticsResult(BaseModel):
    """Insulin or carbs on board, with the source that produced the value."""

    model_config = ConfigDict(frozen=True)

    value: float = Field(0.0, ge=0)
    source: str = CARE_PORTAL
    device: Optional[str] = None
    mills: Optional[int] = None
    contributing_treatments: List[Treatment] = Field(default_factory=list)
    activity: Optional[float] = None
    basal_iob: Optional[float] = None
    treatment_value: Optional[float] = Field(
        None, description="Treatment-derived value, reported alongside a device value"
    )
    display_line: Optional[str] = None


@dataclass(frozen=True)
class CarbContribution:
    carb_contrib: float = 0.0
    activity_contrib: float = 0.0
    decayed_by_ms: Optional[int] = None
    is_decaying: bool = False
    initial_carbs: float = 0.0


@dataclass(frozen=True)
class InsulinContribution:
    iob_contrib: float = 0.0
    activity_contrib: float = 0.0


@dataclass(frozen=True)
class DeviceReading:
    value: float
    source: str
    device: Optional[str] = None
    mills: Optional[int] = None
    basal_iob: Optional[float] = None
    activity: Optional[float] = None
