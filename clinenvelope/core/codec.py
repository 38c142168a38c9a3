"""Content codec for payload attachments.

Attachment data travels as base64 text.  Binary document formats keep
their raw bytes after decoding; everything else is decoded as UTF-8 text.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from clinenvelope.errors import PayloadDecodeError
from clinenvelope.models.resources import Attachment

logger = logging.getLogger(__name__)

DEFAULT_BINARY_TYPES = ("application/pdf", "application/octet-stream")


class DecodedContent(BaseModel):
    """Result of decoding one attachment.

    ``content`` is ``bytes`` for binary types, ``str`` for text, and
    ``None`` when the attachment had no data or could not be decoded.
    """

    model_config = ConfigDict(frozen=True)

    is_binary: bool
    content: bytes | str | None = None
    content_type: str | None = None
    filename: str | None = None


def _media_type(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


class ContentCodec:
    """Encodes raw payload bytes into attachments and back.

    Parameters
    ----------
    binary_content_types:
        Media types whose content is kept as raw bytes.  Any ``image/*``
        type is binary as well.
    """

    def __init__(self, binary_content_types: Iterable[str] = DEFAULT_BINARY_TYPES) -> None:
        self._binary_types = frozenset(_media_type(t) for t in binary_content_types)

    def is_binary(self, content_type: str | None) -> bool:
        media = _media_type(content_type)
        return media in self._binary_types or media.startswith("image/")

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def encode(
        self,
        data: bytes,
        content_type: str,
        filename: str | None = None,
        *,
        title: str | None = None,
        language: str | None = None,
        creation: datetime | None = None,
    ) -> Attachment:
        """Wrap raw bytes in an attachment.

        The attachment title is the filename when one is given, otherwise
        *title*.
        """
        return Attachment(
            content_type=content_type,
            data=base64.b64encode(data).decode("ascii"),
            title=filename or title,
            language=language,
            creation=creation,
        )

    def encode_text(
        self,
        text: str,
        content_type: str = "text/plain",
        *,
        title: str | None = None,
        language: str | None = None,
        creation: datetime | None = None,
    ) -> Attachment:
        return self.encode(
            text.encode("utf-8"),
            content_type,
            title=title,
            language=language,
            creation=creation,
        )

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def decode(self, attachment: Attachment | None, *, strict: bool = False) -> DecodedContent:
        """Decode an attachment into bytes (binary) or text.

        Decode failures never raise unless *strict* is set; the content is
        left as ``None`` and a warning is logged.
        """
        if attachment is None:
            return DecodedContent(is_binary=False)

        binary = self.is_binary(attachment.content_type)
        try:
            content = self._decode_data(attachment, binary)
        except PayloadDecodeError as exc:
            if strict:
                raise
            logger.warning("Attachment %r not decodable: %s", attachment.title, exc)
            content = None

        return DecodedContent(
            is_binary=binary,
            content=content,
            content_type=attachment.content_type,
            filename=attachment.title,
        )

    @staticmethod
    def _decode_data(attachment: Attachment, binary: bool) -> bytes | str | None:
        if attachment.data is None:
            return None
        try:
            raw = base64.b64decode("".join(attachment.data.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise PayloadDecodeError(f"invalid base64 data: {exc}") from exc
        if binary:
            return raw
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PayloadDecodeError(
                f"content declared as {attachment.content_type!r} is not valid UTF-8"
            ) from exc
