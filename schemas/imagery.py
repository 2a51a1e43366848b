"""
Pydantic schemas for imagery client results and API-call audit entries
"""

from pydantic import BaseModel, Field
from typing import Optional, List
import datetime


class IndexResult(BaseModel):
    """Decoded aggregate value of one spectral index at one point and date"""
    index: str
    value: float
    latitude: float
    longitude: float
    date: datetime.date
    pixel_count: int = Field(..., ge=1)
    source: str = "Sentinel-2 (Copernicus Data Space)"

    class Config:
        frozen = True


class OverlayImage(BaseModel):
    """Colour-visualised PNG of an index (or true colour) around a point"""
    overlay: str
    latitude: float
    longitude: float
    date: datetime.date
    width: int
    height: int
    image_url: str  # base64 data URL


class ApiCallContext(BaseModel):
    """Attribution copied onto every audit entry produced for a fetch"""
    measurement_id: Optional[int] = None
    campaign_id: Optional[int] = None
    user_id: Optional[int] = None
    call_type: str = "enrichment"


class ApiCallEntry(BaseModel):
    """One imagery API invocation (cache hits included) awaiting persistence"""
    measurement_id: Optional[int] = None
    campaign_id: Optional[int] = None
    user_id: Optional[int] = None
    call_type: str
    index_type: Optional[str] = None
    latitude: float
    longitude: float
    acquisition_date: datetime.date
    cached: bool
    response_time_ms: int = Field(0, ge=0)
    cost_credits: float = Field(1.0, ge=0)
    created_at: datetime.datetime = Field(default_factory=datetime.datetime.utcnow)


class ApiCallLog:
    """
    In-memory buffer of audit entries.

    Fetches for one enrichment run happen concurrently, so entries are
    collected here and persisted by the orchestrator in its own transaction.
    """

    def __init__(self):
        self._entries: List[ApiCallEntry] = []

    def record(self, entry: ApiCallEntry) -> None:
        self._entries.append(entry)

    def drain(self) -> List[ApiCallEntry]:
        entries, self._entries = self._entries, []
        return entries

    @property
    def entries(self) -> List[ApiCallEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
