from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .db import VinRecord


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class VinPostRequest(ApiModel):
    code: str | None = None
    date: datetime | None = None
    user_agent: str | None = Field(None, alias="userAgent")


class VinOut(ApiModel):
    id: int
    code: str
    date: datetime
    user_agent: str | None = Field(None, alias="userAgent")
    ip_address: str | None = Field(None, alias="ipAddress")
    created_at: datetime = Field(alias="createdAt")

    @field_serializer("date", "created_at")
    def serialize_utc(self, value: datetime) -> str:
        # stored timestamps are naive UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()

    @classmethod
    def from_record(cls, record: VinRecord) -> "VinOut":
        return cls(
            id=record.id,
            code=record.code,
            date=record.date_created,
            user_agent=record.user_agent,
            ip_address=record.ip_address,
            created_at=record.created_at,
        )


class VinListResponse(ApiModel):
    success: bool = True
    vins: list[VinOut]


class VinPostResponse(ApiModel):
    success: bool = True
    message: str
    vin: VinOut


class VinDeleteResponse(ApiModel):
    success: bool = True
    message: str
    deleted_vin: VinOut = Field(alias="deletedVin")


class VinStats(ApiModel):
    total: int
    today: int
    this_week: int = Field(alias="thisWeek")
    this_month: int = Field(alias="thisMonth")


class VinStatsResponse(ApiModel):
    success: bool = True
    stats: VinStats


class VinImportResponse(ApiModel):
    success: bool = True
    message: str
    imported: int
    duplicates: int
    errors: int
    error_details: list[str] = Field(alias="errorDetails")


class OcrRequest(ApiModel):
    image: str | None = None


class OcrResponse(ApiModel):
    success: bool
    vin: str | None = None
    all_text: str | None = Field(None, alias="allText")
    message: str | None = None


class StatusResponse(ApiModel):
    success: bool = True
    status: str
    database: str
    total_vins: int = Field(alias="totalVins")
    uptime_seconds: int = Field(alias="uptimeSeconds")
