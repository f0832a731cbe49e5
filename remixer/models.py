from dataclasses import asdict, dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class Owner:
    id: int
    username: str


@dataclass
class TrackVersion:
    index: int
    path: str
    duration: Optional[float]


@dataclass
class Track:
    id: int
    owner_id: int
    original_filename: str
    original_path: str
    format: Optional[str]
    bitrate: Optional[int]
    duration: Optional[float]
    bpm: Optional[float]
    key: Optional[str]
    status: str  # 'uploaded' | 'processing' | 'regenerate' | 'completed' | 'error'
    settings: Optional[dict]
    version_count: int
    error_msg: Optional[str]
    created_at: str
    updated_at: str
    versions: list[TrackVersion] = field(default_factory=list)

    @property
    def extended_paths(self) -> list[str]:
        return [v.path for v in self.versions]

    @property
    def extended_durations(self) -> list[Optional[float]]:
        return [v.duration for v in self.versions]

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("versions")
        data["extended_paths"] = self.extended_paths
        data["extended_durations"] = self.extended_durations
        return data


@dataclass
class AudioInfo:
    format: Optional[str]
    bitrate: Optional[int]
    duration: Optional[float]
    bpm: Optional[float]
    key: Optional[str]


class ProcessingSettings(BaseModel):
    """Settings for one extension run. Accepts camelCase keys from the web client."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", strict=True)

    intro_length: int = Field(alias="introLength", ge=0, le=120)
    outro_length: int = Field(alias="outroLength", ge=0, le=120)
    preserve_vocals: bool = Field(alias="preserveVocals")
    beat_detection: Literal["auto", "librosa", "madmom"] = Field(alias="beatDetection")
