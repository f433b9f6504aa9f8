"""
License Authority Models - wire schemas for the external license service.

Outbound bodies serialize with camelCase keys. The upsert response adapter
accepts the field spellings the authority is known to emit and fails on a
missing license key instead of defaulting.
"""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class LicenseUpsertRequest(BaseModel):
    """Body of POST /admin/license/upsert."""

    model_config = ConfigDict(populate_by_name=True)

    user_email: str = Field(..., serialization_alias="userEmail")
    plan_code: str = Field(..., serialization_alias="planCode")
    starts_at: datetime = Field(..., serialization_alias="startsAt")
    expires_at: datetime | None = Field(None, serialization_alias="expiresAt")
    max_requests_per_day: int | None = Field(None, serialization_alias="maxRequestsPerDay")


class LicenseUpsertResponse(BaseModel):
    """Response adapter for POST /admin/license/upsert."""

    model_config = ConfigDict(extra="ignore")

    license_key: str = Field(
        ..., validation_alias=AliasChoices("licenseKey", "license_key", "key")
    )
    plan: str | None = None
    expires_at: datetime | None = Field(
        None, validation_alias=AliasChoices("expiresAt", "expires_at")
    )
    limit_per_day: int | None = Field(
        None, validation_alias=AliasChoices("limitPerDay", "limit_per_day")
    )

    @field_validator("license_key")
    @classmethod
    def require_license_key(cls, v: str) -> str:
        """An empty key is as bad as a missing one."""
        v = v.strip()
        if not v:
            raise ValueError("license key is empty")
        return v


class LicenseGrant(BaseModel):
    """License issued or extended by the authority."""

    model_config = ConfigDict(frozen=True)

    license_key: str
    plan: str
    expires_at: datetime | None
    limit_per_day: int | None


class LicenseUpdateRequest(BaseModel):
    """
    Body of POST /admin/license/update.

    Only fields explicitly set by the caller are sent, so an omitted field
    never overwrites authority-side state with null. An explicit None is sent.
    """

    model_config = ConfigDict(populate_by_name=True)

    subscription_id: UUID = Field(..., serialization_alias="subscriptionId")
    user_email: str = Field(..., serialization_alias="userEmail")
    license_key: str | None = Field(None, serialization_alias="licenseKey")
    status: str | None = None
    expires_at: datetime | None = Field(None, serialization_alias="expiresAt")
    add_days: int | None = Field(None, serialization_alias="addDays")
    max_requests: int | None = Field(None, serialization_alias="maxRequests")

    def to_wire(self) -> dict[str, object]:
        """Serialize for the authority, keeping only explicitly provided fields."""
        body = self.model_dump(mode="json", by_alias=True, exclude_unset=True)
        body["licenseKey"] = self.license_key
        return body
