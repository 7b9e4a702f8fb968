from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    success: bool = True
    message: str
    status: str
    database: str
    processing_queue: dict | None = None
    timestamp: datetime
    environment: str
    version: str


class QuotaStatusResponse(BaseModel):
    success: bool = True
    message: str
    providers: dict[str, dict]
    best_available: dict[str, str]
