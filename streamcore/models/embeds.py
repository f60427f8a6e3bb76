"""
Attachment handling shared by the adapters.

Embeds are opaque handles; the caller supplies `StreamConfig.resolve_embed` to
turn one into bytes. MIME types are derived from the file name and checked
against what the target vendor accepts *before* anything is resolved or sent.
"""
from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass
from typing import Collection, Optional

from streamcore.errors import UnsupportedInputError
from streamcore.models.base import Embed, EmbedResolver, Message

IMAGE_MIME_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")
PDF_MIME_TYPE = "application/pdf"

_EXTENSION_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": PDF_MIME_TYPE,
}


def mime_type_for(embed: Embed) -> str:
    link = embed.link.lower()
    for extension, mime in _EXTENSION_TYPES.items():
        if link.endswith(extension):
            return mime
    guessed, _ = mimetypes.guess_type(embed.link)
    return guessed or "application/octet-stream"


@dataclass(frozen=True)
class ResolvedEmbed:
    link: str
    mime_type: str
    data: bytes

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"

    @property
    def is_image(self) -> bool:
        return self.mime_type in IMAGE_MIME_TYPES


def check_embeds(messages: list[Message], allowed: Collection[str], provider: str) -> None:
    """Reject unsupported attachment types for the whole conversation up front."""
    for msg in messages:
        for embed in msg.embeds:
            mime = mime_type_for(embed)
            if mime not in allowed:
                supported = ", ".join(allowed)
                raise UnsupportedInputError(
                    f"{provider}: unsupported attachment '{embed.link}' ({mime}). Supported: {supported}"
                )


async def resolve_embeds(
    message: Message,
    resolver: Optional[EmbedResolver],
) -> list[ResolvedEmbed]:
    if not message.embeds:
        return []
    if resolver is None:
        raise UnsupportedInputError("Message has attachments but no embed resolver was configured")
    resolved = []
    for embed in message.embeds:
        data = await resolver(embed)
        resolved.append(ResolvedEmbed(link=embed.link, mime_type=mime_type_for(embed), data=data))
    return resolved
