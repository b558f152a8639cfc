"""Payload schemas for everything exchanged with the core.

The core speaks camelCase JSON; models keep snake_case attributes and
carry the wire names as aliases. Payloads are validated on receipt and
a ValidationError means the payload is rejected, never half-processed.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_DESCRIPTION = "FALLBACK_UNKNOWN"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


def _localized(value: Optional[dict], default: str) -> dict[str, str]:
    if value is None:
        return {"fallback": default}
    if not isinstance(value, dict):
        return value
    value = {str(k): str(v) for k, v in value.items()}
    value.setdefault("fallback", default)
    return value


# ============================================================
# COMMAND DISCOVERY
# ============================================================

class ModuleInfo(WireModel):
    """One entry of ``get_registered_modules``."""

    module_id: str = Field(alias="moduleID")
    type: str = ""
    namespace: str = ""
    display_name: str = Field(default="", alias="displayname")
    running: bool = False


class CommandAnnouncement(WireModel):
    """A command as announced by a command-source module."""

    command: str = Field(min_length=1)
    description: dict[str, str] = Field(default_factory=lambda: {"fallback": UNKNOWN_DESCRIPTION})
    args: dict[str, str] = Field(default_factory=lambda: {"fallback": ""})
    args_name: Optional[list[str]] = Field(default=None, alias="argsName")
    compatibility: Optional[list[str]] = None

    @field_validator("description", mode="before")
    @classmethod
    def _description_fallback(cls, value):
        return _localized(value, UNKNOWN_DESCRIPTION)

    @field_validator("args", mode="before")
    @classmethod
    def _args_fallback(cls, value):
        return _localized(value, "")

    def supports(self, platform: str) -> bool:
        """An empty or missing compatibility list means every platform."""
        return not self.compatibility or platform in self.compatibility


class CommandListResponse(WireModel):
    commands: list[dict[str, Any]] = Field(default_factory=list)


class RegistrationEventData(CommandAnnouncement):
    is_register_event: bool = Field(alias="isRegisterEvent")
    namespace: str = ""


class RegistrationEvent(WireModel):
    called_from: str = Field(default="", alias="calledFrom")
    event_name: str = Field(alias="eventName")
    event_data: RegistrationEventData = Field(alias="eventData")


# ============================================================
# ADAPTER API REQUESTS
# ============================================================

class LoginData(WireModel):
    token: str = Field(min_length=1)
    application_id: Optional[str] = Field(default=None, alias="applicationID")
    intents: Union[list[Union[str, int]], int] = Field(default_factory=list)
    disable_slash_command: bool = Field(default=False, alias="disableSlashCommand")


class LoginRequest(WireModel):
    interface_id: int = Field(alias="interfaceID")
    login_data: LoginData = Field(alias="loginData")


class InterfaceRequest(WireModel):
    interface_id: int = Field(alias="interfaceID")


class AttachmentRef(WireModel):
    filename: str = "unknown.png"
    url: str


class SendMessageRequest(InterfaceRequest):
    content: str = ""
    attachments: list[AttachmentRef] = Field(default_factory=list)
    channel_id: str = Field(alias="channelID")
    reply_message_id: Optional[str] = Field(default=None, alias="replyMessageID")
    additional_interface_data: dict[str, Any] = Field(default_factory=dict, alias="additionalInterfaceData")

    @field_validator("content", mode="before")
    @classmethod
    def _content_default(cls, value):
        return "" if value is None else value

    @field_validator("channel_id", "reply_message_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return value if value is None else str(value)

    @field_validator("additional_interface_data", mode="before")
    @classmethod
    def _extra_default(cls, value):
        return value or {}


class UserInfoRequest(InterfaceRequest):
    user_id: str = Field(alias="userID")

    @field_validator("user_id", mode="before")
    @classmethod
    def _stringify(cls, value):
        return str(value)


class ChannelInfoRequest(InterfaceRequest):
    channel_id: str = Field(alias="channelID")

    @field_validator("channel_id", mode="before")
    @classmethod
    def _stringify(cls, value):
        return str(value)


# ============================================================
# CANONICAL INBOUND EVENT
# ============================================================

class MentionSpan(WireModel):
    model_config = ConfigDict(frozen=True)

    start: int
    length: int


class InboundEvent(WireModel):
    """Canonical message emitted to the core as ``interface_message``."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    interface_id: int = Field(alias="interfaceID")
    interface_handler_name: str = Field(alias="interfaceHandlerName")
    content: str
    attachments: list[AttachmentRef] = Field(default_factory=list)
    mentions: dict[str, MentionSpan] = Field(default_factory=dict)
    message_id: str = Field(alias="messageID")
    formatted_message_id: str = Field(alias="formattedMessageID")
    channel_id: str = Field(alias="channelID")
    formatted_channel_id: str = Field(alias="formattedChannelID")
    guild_id: str = Field(alias="guildID")
    formatted_guild_id: str = Field(alias="formattedGuildID")
    sender_id: str = Field(alias="senderID")
    formatted_sender_id: str = Field(alias="formattedSenderID")
    additional_interface_data: dict[str, Any] = Field(default_factory=dict, alias="additionalInterfaceData")
