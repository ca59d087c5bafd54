from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class DeviceStatus(BaseModel):
    """
    Status upload from a closed-loop system or pump uploader.

    Either the flat reported_* fields are set, or the raw vendor payload
    (loop / openaps / pump, plus the MiniMed Connect marker) is carried
    as received.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    timestamp_ms: int = Field(..., alias="mills")
    device_id: str = Field("", alias="device")
    source_tag: Optional[str] = Field(None, alias="sourceTag")
    reported_iob: Optional[float] = Field(None, alias="reportedIob")
    reported_cob: Optional[float] = Field(None, alias="reportedCob")

    loop: Optional[Dict[str, Any]] = None
    openaps: Optional[Dict[str, Any]] = None
    pump: Optional[Dict[str, Any]] = None
    connect: Optional[Dict[str, Any]] = None
