"""
Payload decoding for inbound print requests.

Requests carry the document as base64. Decoding failures are client errors;
the content type is sniffed from magic bytes so backends can announce a
document format without trusting the caller.
"""

import base64
import binascii

from print_dispatch.errors import ClientError

PDF_MAGIC = b"%PDF"

# Magic prefix -> MIME type
MAGIC_TYPES = (
    (PDF_MAGIC, "application/pdf"),
    (b"%!PS", "application/postscript"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def decode_payload(encoded: str) -> bytes:
    """
    Decode a base64 document payload.

    Accepts an optional data-URL prefix ("data:application/pdf;base64,").

    Raises:
        ClientError: if the text is not valid base64 or decodes to nothing
    """
    if encoded.startswith("data:") and "," in encoded:
        encoded = encoded.split(",", 1)[1]

    try:
        data = base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ClientError("Invalid base64 payload", {"reason": str(e)}) from e

    if not data:
        raise ClientError("Invalid base64 payload", {"reason": "empty document"})

    return data


def sniff_content_type(data: bytes) -> str:
    """Return the MIME type implied by the payload's leading bytes."""
    for magic, content_type in MAGIC_TYPES:
        if data.startswith(magic):
            return content_type
    return DEFAULT_CONTENT_TYPE
