"""Pydantic schemas for the status, records and registration endpoints."""

from __future__ import annotations

from pydantic import Field

from scrobbles.lastfm.base import Record, ScanWatermark
from scrobbles.models.base import ScrobblesBase


class SystemStatus(ScrobblesBase):
    users: list[str] = Field(default_factory=list)


class MbidEntity(ScrobblesBase):
    name: str = ""
    mbid: str = ""


class RecordRead(ScrobblesBase):
    track: MbidEntity
    album: MbidEntity
    artist: MbidEntity
    ts: int

    @classmethod
    def from_record(cls, record: Record) -> "RecordRead":
        return cls(
            track=MbidEntity(name=record.track, mbid=record.track_mbid),
            album=MbidEntity(name=record.album, mbid=record.album_mbid),
            artist=MbidEntity(name=record.artist, mbid=record.artist_mbid),
            ts=record.timestamp,
        )


class UserStatus(ScrobblesBase):
    last_scan_records_found: int = Field(default=0, alias="lastScanRecordsFound")
    last_scan_timestamp: int = Field(default=0, alias="lastScanTimestamp")
    last_scan_max_record_timestamp: int = Field(default=0, alias="lastScanMaxRecordTimestamp")
    total_records: int = Field(default=0, alias="totalRecords")

    @classmethod
    def from_watermark(cls, watermark: ScanWatermark, total_records: int) -> "UserStatus":
        return cls(
            last_scan_records_found=watermark.records_found,
            last_scan_timestamp=watermark.run_timestamp,
            last_scan_max_record_timestamp=watermark.max_record_timestamp,
            total_records=total_records,
        )


class UserCreated(ScrobblesBase):
    username: str
