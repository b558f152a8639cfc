"""Error taxonomy for the adapter boundary.

Components raise AdapterError subclasses; the API layer turns them into
``(message, payload)`` responses so nothing ever crosses back into the
core as an exception.
"""

import asyncio
from typing import Optional

import discord
import httpx


class AdapterError(Exception):
    """Caller-facing failure with the payload the core should receive."""

    message = "Request failed"

    def __init__(self, message: Optional[str] = None, payload: Optional[dict] = None):
        super().__init__(message or self.message)
        self.payload = {"success": False} if payload is None else payload

    def as_response(self) -> tuple[str, dict]:
        return str(self), self.payload


class UnknownInterfaceError(AdapterError):
    message = "Interface ID does not exist"


class ChannelNotFoundError(AdapterError):
    message = "Channel does not exist"


class NotTextChannelError(AdapterError):
    message = "Channel is not text-based"


class UserNotFoundError(AdapterError):
    message = "User does not exist"


class AttachmentError(AdapterError):
    message = "Attachment could not be loaded"


def classify_error(e: Exception) -> str:
    """Short log-safe description of a platform or transport failure."""
    if isinstance(e, AdapterError):
        return str(e)

    # Discord API errors
    if isinstance(e, discord.NotFound):
        return "Discord resource not found."
    if isinstance(e, discord.Forbidden):
        return "Missing Discord permissions for this action."
    if isinstance(e, discord.RateLimited):
        return "Rate limited by Discord."
    if isinstance(e, discord.DiscordServerError):
        return "Discord is having server issues."
    if isinstance(e, discord.HTTPException):
        return f"Discord returned HTTP {e.status}."
    if isinstance(e, discord.LoginFailure):
        return "Discord rejected the bot token."

    # Attachment fetches
    if isinstance(e, httpx.HTTPStatusError):
        return f"Attachment host returned HTTP {e.response.status_code}."
    if isinstance(e, httpx.ConnectError):
        return "Cannot connect to attachment host."
    if isinstance(e, httpx.TimeoutException):
        return "Attachment fetch timed out."

    if isinstance(e, asyncio.TimeoutError):
        return "Request timed out."
    if isinstance(e, OSError):
        return "Local file could not be read."

    return f"Unexpected error ({type(e).__name__})."
