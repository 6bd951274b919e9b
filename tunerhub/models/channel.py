"""
Channel data models.
Raw records from source adapters, operator overrides, and the canonical
channel that every other subsystem references.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class DeviceMeta(BaseModel):
    """Tuner identity for channels that come from an HDHomeRun device."""
    model_config = ConfigDict(frozen=True)

    device_id: str = ""
    base_url: str = ""
    model: str = ""


class RawChannel(BaseModel):
    """Channel record as produced by a source adapter, before resolution."""
    name: str = ""
    tvg_id: str = ""
    logo: str = ""
    guide_number: str = ""
    group: str = ""
    source: str
    url: str
    device: Optional[DeviceMeta] = None


class MappingOverride(BaseModel):
    """Operator-supplied replacement fields, keyed by channel name or tvg-id."""
    name: Optional[str] = None
    tvg_id: Optional[str] = None
    logo: Optional[str] = None
    number: Optional[str] = None  # guide number
    group: Optional[str] = None
    url: Optional[str] = None  # replacement upstream address

    @model_validator(mode="after")
    def _at_least_one_field(self):
        if not any([self.name, self.tvg_id, self.logo, self.number, self.group, self.url]):
            raise ValueError(
                "Each channel mapping must set at least one of name, tvg_id, logo, number, group, url"
            )
        return self


class Channel(BaseModel):
    """Canonical, post-resolution channel. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    name: str
    tvg_id: str = ""
    guide_number: str = ""
    logo: str = ""
    group: str = ""
    source: str
    original_url: str = Field(repr=False)
    route: str
    device: Optional[DeviceMeta] = None

    def public_dict(self) -> dict:
        """Client-facing representation; never includes the upstream address."""
        return self.model_dump(exclude={"original_url"})
