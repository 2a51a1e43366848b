"""
Quality flag schemas.

A flag is a non-blocking annotation attached to a measurement by the quality
engine. Each rule produces exactly one flag type with a fixed reason string;
the flags are stored on the measurement as an ordered JSON list and parsed
back through the discriminated union below.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _FlagBase(BaseModel):
    reason: str
    severity: Literal["info", "warning", "critical"] = "warning"
    flagged_at: datetime = Field(default_factory=datetime.utcnow)


class LowAccuracyFlag(_FlagBase):
    """GPS fix worse than the low-accuracy threshold"""
    type: Literal["low_accuracy"] = "low_accuracy"
    reason: str = "GPS accuracy is worse than the acceptable threshold"
    accuracy_meters: Optional[float] = None


class OutlierFlag(_FlagBase):
    """Value far outside the trailing approved baseline of its campaign and metric"""
    type: Literal["outlier"] = "outlier"
    reason: str = "Value deviates strongly from recent approved readings"
    details: Dict[str, Any] = Field(default_factory=dict)


class OutsideZoneFlag(_FlagBase):
    """Location outside every survey zone of the campaign"""
    type: Literal["outside_zone"] = "outside_zone"
    reason: str = "Data point location is outside campaign survey zones"
    severity: Literal["info", "warning", "critical"] = "critical"
    zone_count: int = 0


class UnexpectedRangeFlag(_FlagBase):
    """Value outside the metric's configured expected range"""
    type: Literal["unexpected_range"] = "unexpected_range"
    reason: str = "Value is outside the metric's expected range"
    severity: Literal["info", "warning", "critical"] = "info"
    expected_min: Optional[float] = None
    expected_max: Optional[float] = None


QualityFlag = Annotated[
    Union[LowAccuracyFlag, OutlierFlag, OutsideZoneFlag, UnexpectedRangeFlag],
    Field(discriminator="type"),
]

_flag_list_adapter = TypeAdapter(List[QualityFlag])


def parse_flags(raw: Optional[List[Dict[str, Any]]]) -> List[QualityFlag]:
    """Parse the stored JSON list into typed flags, preserving order."""
    if not raw:
        return []
    return _flag_list_adapter.validate_python(raw)


def dump_flags(flags: List[QualityFlag]) -> List[Dict[str, Any]]:
    """Serialize typed flags into the JSON list stored on the measurement."""
    return _flag_list_adapter.dump_python(flags, mode="json")
