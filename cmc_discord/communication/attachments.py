"""Outbound attachment loading: turns ``{filename, url}`` refs into discord.File."""

import base64
import binascii
import io
import logging
import os
from typing import Optional
from urllib.parse import unquote_to_bytes, urlparse
from urllib.request import url2pathname

import discord
import httpx

from .errors import AttachmentError, classify_error
from ..core.protocol import AttachmentRef

logger = logging.getLogger("cmc_discord.communication.attachments")


def decode_data_url(url: str) -> bytes:
    """Decode a ``data:`` URL (base64 or percent-encoded)."""
    header, sep, body = url.partition(",")
    if not sep:
        raise ValueError("data URL has no payload")
    params = header[len("data:"):].split(";")
    if "base64" in params[1:]:
        return base64.b64decode(body, validate=False)
    return unquote_to_bytes(body)


async def load_attachment(ref: AttachmentRef, timeout: float = 30.0) -> Optional[discord.File]:
    """Load one attachment.

    Returns None for unsupported URL schemes (the attachment is skipped).
    Raises AttachmentError when a supported source cannot be read.
    """
    url = ref.url
    scheme = urlparse(url).scheme.lower()

    try:
        if scheme == "data":
            return discord.File(io.BytesIO(decode_data_url(url)), filename=ref.filename)

        if scheme in ("http", "https"):
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                resp = await client.get(url)
                resp.raise_for_status()
            return discord.File(io.BytesIO(resp.content), filename=ref.filename)

        if scheme == "file":
            path = url2pathname(urlparse(url).path)
            if not os.path.isfile(path):
                raise FileNotFoundError(path)
            return discord.File(path, filename=ref.filename)

    except (ValueError, binascii.Error, httpx.HTTPError, OSError) as e:
        logger.warning(f"Attachment '{ref.filename}' failed: {classify_error(e)}")
        raise AttachmentError() from e

    logger.debug(f"Skipping attachment '{ref.filename}' with unsupported scheme '{scheme}'")
    return None


async def load_attachments(refs: list[AttachmentRef], timeout: float = 30.0) -> list[discord.File]:
    files = []
    try:
        for ref in refs:
            f = await load_attachment(ref, timeout=timeout)
            if f is not None:
                files.append(f)
    except AttachmentError:
        for f in files:
            f.close()
        raise
    return files
