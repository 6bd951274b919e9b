"""
Guide (XMLTV) validation models.
"""
from pydantic import BaseModel, Field


class GuideReport(BaseModel):
    """Structural validation result for one XMLTV document."""
    valid: bool = True
    channel_count: int = 0
    programme_count: int = 0
    valid_channels: int = 0
    valid_programmes: int = 0
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    def add_error(self, message: str):
        self.valid = False
        self.errors.append(message)
