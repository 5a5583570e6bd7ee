"""
Request bodies for the HTTP API.

The reading body accepts the legacy field names older firmware still sends
(``api_key``, ``temp``, ``mcp_temp``, ``hdc_humidity``, ...); everything past
this module only sees the canonical names.
"""

from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from hive_monitor.core.database import to_naive_utc


class ReadingIn(BaseModel):
    """Reading submitted by an edge device."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    credential: str | None = Field(None, validation_alias=AliasChoices("credential", "api_key"))
    temperature: float | None = Field(
        None, validation_alias=AliasChoices("temperature", "temp", "mcp_temp")
    )
    secondary_temperature: float | None = Field(
        None, validation_alias=AliasChoices("secondary_temperature", "hdc_temp")
    )
    humidity: float | None = Field(None, validation_alias=AliasChoices("humidity", "hdc_humidity"))
    weight: float | None = Field(None, validation_alias=AliasChoices("weight", "weight_kg"))
    battery_voltage: float | None = Field(
        None, validation_alias=AliasChoices("battery_voltage", "voltage")
    )
    battery_percent: float | None = None
    relay_connected: bool | None = Field(
        None, validation_alias=AliasChoices("relay_connected", "lvd_status", "lvd_state")
    )

    # Backfill only; server time is used when absent
    recorded_at: datetime | None = None

    def reading_fields(self) -> dict:
        return self.model_dump(exclude={"credential", "recorded_at"}, exclude_none=True)

    def recorded_at_utc(self) -> datetime | None:
        """Backfill timestamp as naive UTC (storage convention)."""
        return to_naive_utc(self.recorded_at)


class PolicyUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    disconnect_voltage: float | None = Field(
        None, validation_alias=AliasChoices("disconnect_voltage", "disconnect_volt")
    )
    reconnect_voltage: float | None = Field(
        None, validation_alias=AliasChoices("reconnect_voltage", "reconnect_volt")
    )
    enabled: bool | None = Field(None, validation_alias=AliasChoices("enabled", "lvd_enabled"))

    def changes(self) -> dict:
        return self.model_dump(exclude_none=True)


class DeviceIn(BaseModel):
    name: str | None = None


class LoginIn(BaseModel):
    username: str = ""
    password: str = ""


class ChangePasswordIn(BaseModel):
    current_password: str = Field("", validation_alias=AliasChoices("current_password", "currentPassword"))
    new_password: str = Field("", validation_alias=AliasChoices("new_password", "newPassword"))
