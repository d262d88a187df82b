from __future__ import annotations

from typing import Dict, Optional

from pydantic import BaseModel, Field, TypeAdapter


class ActiveTimerModel(BaseModel):
    project: str = Field(max_length=1000)
    task: str = Field(max_length=1000)
    startTime: Optional[str] = None
    accumulatedMs: int = Field(default=0, ge=0)
    isPaused: bool = False
    notes: str = ""


class HistoricalEntryModel(BaseModel):
    project: str = Field(max_length=1000)
    task: str = Field(max_length=1000)
    totalDurationMs: int = Field(gt=0)
    durationSeconds: Optional[int] = None
    endTime: str
    createdAt: Optional[str] = None
    notes: str = ""


class MessageResponse(BaseModel):
    message: str


class DocumentHealth(BaseModel):
    exists: bool
    readable: bool


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    uptime: float
    documents: Dict[str, DocumentHealth]


ActiveSetPayload = TypeAdapter(Dict[str, ActiveTimerModel])
HistoryPayload = TypeAdapter(list[HistoricalEntryModel])
