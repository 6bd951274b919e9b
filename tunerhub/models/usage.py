"""
Viewer usage session model.
"""
from datetime import datetime

from pydantic import BaseModel, Field


class UsageSession(BaseModel):
    """One viewer (client address) actively consuming one channel."""
    ip: str
    channel_id: str
    name: str = ""
    tvg_id: str = ""
    started_at: datetime
    last_seen: datetime

    @property
    def key(self) -> str:
        return f"{self.ip}|{self.channel_id}"


class UsageReport(BaseModel):
    """Response model for /api/usage/active."""
    active: list[dict] = Field(default_factory=list)
    count: int = 0
