from datetime import datetime

from app.schemas.base import ApiModel


class HealthResponse(ApiModel):
    status: str = "ok"
    service: str
    version: str
    data_store: str
    timestamp: datetime
