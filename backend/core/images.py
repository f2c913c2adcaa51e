from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from urllib.parse import unquote_to_bytes

from core.exceptions import ValidationError


@dataclass(frozen=True)
class InlineImage:
    mime_type: str
    data: bytes

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


def is_data_uri(value: str) -> bool:
    return value.startswith("data:")


def decode_data_uri(uri: str) -> InlineImage:
    """Split a `data:<mime>[;base64],<payload>` URI into raw bytes and mime type."""
    if not is_data_uri(uri):
        raise ValidationError("Images for this model must be inline data: URIs", field="images")

    header, sep, payload = uri.partition(",")
    if not sep:
        raise ValidationError("Malformed data URI (missing ',')", field="images")

    params = header[len("data:"):].split(";")
    mime_type = params[0].strip().lower()
    if not mime_type:
        raise ValidationError("Data URI has no mime type", field="images")

    if "base64" in (p.strip().lower() for p in params[1:]):
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Invalid base64 image payload: {e}", field="images") from e
    else:
        data = unquote_to_bytes(payload)

    if not data:
        raise ValidationError("Empty image payload", field="images")
    return InlineImage(mime_type=mime_type, data=data)
