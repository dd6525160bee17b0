"""
Minimal IPP/1.1 message codec (RFC 8010 binary encoding).

Requests and responses share one layout:

    version (2) | operation-id or status-code (2) | request-id (4)
    { delimiter-tag | attributes... }* | end-of-attributes-tag | data

Only what the network backend needs is covered: building Print-Job and
Get-Printer-Attributes requests, and reading status, job-id and printer
attributes back out of a response.
"""

import struct
from dataclasses import dataclass, field
from typing import Any, Optional


OP_PRINT_JOB = 0x0002
OP_GET_PRINTER_ATTRIBUTES = 0x000B

# Delimiter tags
TAG_OPERATION_ATTRIBUTES = 0x01
TAG_JOB_ATTRIBUTES = 0x02
TAG_END_OF_ATTRIBUTES = 0x03
TAG_PRINTER_ATTRIBUTES = 0x04
TAG_UNSUPPORTED_ATTRIBUTES = 0x05

DELIMITER_TAGS = {
    TAG_OPERATION_ATTRIBUTES,
    TAG_JOB_ATTRIBUTES,
    TAG_END_OF_ATTRIBUTES,
    TAG_PRINTER_ATTRIBUTES,
    TAG_UNSUPPORTED_ATTRIBUTES,
}

# Value tags
VT_UNSUPPORTED = 0x10
VT_UNKNOWN = 0x12
VT_NO_VALUE = 0x13
VT_INTEGER = 0x21
VT_BOOLEAN = 0x22
VT_ENUM = 0x23
VT_OCTET_STRING = 0x30
VT_TEXT_WITHOUT_LANGUAGE = 0x41
VT_NAME_WITHOUT_LANGUAGE = 0x42
VT_KEYWORD = 0x44
VT_URI = 0x45
VT_URI_SCHEME = 0x46
VT_CHARSET = 0x47
VT_NATURAL_LANGUAGE = 0x48
VT_MIME_MEDIA_TYPE = 0x49

STRING_TAGS = {
    VT_TEXT_WITHOUT_LANGUAGE,
    VT_NAME_WITHOUT_LANGUAGE,
    VT_KEYWORD,
    VT_URI,
    VT_URI_SCHEME,
    VT_CHARSET,
    VT_NATURAL_LANGUAGE,
    VT_MIME_MEDIA_TYPE,
}
INTEGER_TAGS = {VT_INTEGER, VT_ENUM}

SUCCESS_KEYWORD = "successful-ok"

STATUS_KEYWORDS = {
    0x0000: "successful-ok",
    0x0001: "successful-ok-ignored-or-substituted-attributes",
    0x0002: "successful-ok-conflicting-attributes",
    0x0400: "client-error-bad-request",
    0x0401: "client-error-forbidden",
    0x0402: "client-error-not-authenticated",
    0x0403: "client-error-not-authorized",
    0x0404: "client-error-not-possible",
    0x0405: "client-error-timeout",
    0x0406: "client-error-not-found",
    0x0407: "client-error-gone",
    0x0408: "client-error-request-entity-too-large",
    0x0409: "client-error-request-value-too-long",
    0x040A: "client-error-document-format-not-supported",
    0x040B: "client-error-attributes-or-values-not-supported",
    0x040C: "client-error-uri-scheme-not-supported",
    0x040D: "client-error-charset-not-supported",
    0x040E: "client-error-conflicting-attributes",
    0x040F: "client-error-compression-not-supported",
    0x0410: "client-error-compression-error",
    0x0411: "client-error-document-format-error",
    0x0412: "client-error-document-access-error",
    0x0500: "server-error-internal-error",
    0x0501: "server-error-operation-not-supported",
    0x0502: "server-error-service-unavailable",
    0x0503: "server-error-version-not-supported",
    0x0504: "server-error-device-error",
    0x0505: "server-error-temporary-error",
    0x0506: "server-error-not-accepting-jobs",
    0x0507: "server-error-busy",
    0x0508: "server-error-job-canceled",
    0x0509: "server-error-multiple-document-jobs-not-supported",
}
STATUS_CODES = {keyword: code for code, keyword in STATUS_KEYWORDS.items()}


class IppDecodeError(ValueError):
    """Raised when a message cannot be parsed."""


def status_keyword(code: int) -> str:
    """Map a status code to its keyword, e.g. 0x0404 -> client-error-not-possible."""
    return STATUS_KEYWORDS.get(code, f"status-0x{code:04x}")


def is_success(token: str) -> bool:
    """
    Classify a status keyword.

    Exact match only: "successful-ok-ignored-or-substituted-attributes" and
    any other longer token containing the success keyword are failures.
    """
    return token == SUCCESS_KEYWORD


@dataclass
class IppAttribute:
    tag: int
    name: str
    values: list[Any] = field(default_factory=list)

    @property
    def value(self) -> Any:
        return self.values[0] if self.values else None


@dataclass
class IppGroup:
    tag: int
    attributes: list[IppAttribute] = field(default_factory=list)

    def add(self, tag: int, name: str, *values: Any) -> "IppGroup":
        self.attributes.append(IppAttribute(tag, name, list(values)))
        return self

    def get(self, name: str) -> Optional[IppAttribute]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None


@dataclass
class IppMessage:
    code: int  # operation-id for requests, status-code for responses
    request_id: int = 1
    groups: list[IppGroup] = field(default_factory=list)
    data: bytes = b""
    version: tuple[int, int] = (1, 1)

    @property
    def status(self) -> str:
        return status_keyword(self.code)

    def group(self, tag: int) -> Optional[IppGroup]:
        for group in self.groups:
            if group.tag == tag:
                return group
        return None

    def find(self, tag: int, name: str) -> Optional[IppAttribute]:
        group = self.group(tag)
        return group.get(name) if group else None


def _encode_value(tag: int, value: Any) -> bytes:
    if tag in INTEGER_TAGS:
        return struct.pack(">i", int(value))
    if tag == VT_BOOLEAN:
        return b"\x01" if value else b"\x00"
    if tag in (VT_UNSUPPORTED, VT_UNKNOWN, VT_NO_VALUE):
        return b""
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def _decode_value(tag: int, raw: bytes) -> Any:
    if tag in INTEGER_TAGS and len(raw) == 4:
        return struct.unpack(">i", raw)[0]
    if tag == VT_BOOLEAN and len(raw) == 1:
        return raw != b"\x00"
    if tag in STRING_TAGS:
        return raw.decode("utf-8", errors="replace")
    return raw


def encode_message(message: IppMessage) -> bytes:
    out = bytearray()
    out += bytes([message.version[0] & 0xFF, message.version[1] & 0xFF])
    out += struct.pack(">H", message.code)
    out += struct.pack(">I", message.request_id)

    for group in message.groups:
        out += bytes([group.tag])
        for attribute in group.attributes:
            name_b = attribute.name.encode("utf-8")
            for index, value in enumerate(attribute.values):
                value_b = _encode_value(attribute.tag, value)
                out += bytes([attribute.tag])
                # additional value: name-length = 0
                if index == 0:
                    out += struct.pack(">H", len(name_b)) + name_b
                else:
                    out += struct.pack(">H", 0)
                out += struct.pack(">H", len(value_b)) + value_b

    out += bytes([TAG_END_OF_ATTRIBUTES])
    out += message.data
    return bytes(out)


def decode_message(raw: bytes) -> IppMessage:
    if len(raw) < 8:
        raise IppDecodeError("IPP message too short")

    message = IppMessage(
        code=struct.unpack(">H", raw[2:4])[0],
        request_id=struct.unpack(">I", raw[4:8])[0],
        version=(raw[0], raw[1]),
    )

    pos = 8

    def _read(n: int) -> bytes:
        nonlocal pos
        if pos + n > len(raw):
            raise IppDecodeError("IPP message truncated")
        chunk = raw[pos:pos + n]
        pos += n
        return chunk

    current: Optional[IppGroup] = None
    last: Optional[IppAttribute] = None

    while True:
        tag = _read(1)[0]

        if tag in DELIMITER_TAGS:
            if tag == TAG_END_OF_ATTRIBUTES:
                break
            current = IppGroup(tag)
            message.groups.append(current)
            last = None
            continue

        if current is None:
            raise IppDecodeError(f"Value tag 0x{tag:02x} outside an attribute group")

        name_len = struct.unpack(">H", _read(2))[0]
        name = _read(name_len).decode("utf-8", errors="replace") if name_len else None
        value_len = struct.unpack(">H", _read(2))[0]
        value = _decode_value(tag, _read(value_len))

        if name is None:
            if last is None:
                raise IppDecodeError("IPP additional value without previous name")
            last.values.append(value)
        else:
            last = IppAttribute(tag, name, [value])
            current.attributes.append(last)

    message.data = raw[pos:]
    return message


def operation_group(printer_uri: str) -> IppGroup:
    """Operation group with the three attributes every request must start with."""
    return (
        IppGroup(TAG_OPERATION_ATTRIBUTES)
        .add(VT_CHARSET, "attributes-charset", "utf-8")
        .add(VT_NATURAL_LANGUAGE, "attributes-natural-language", "en")
        .add(VT_URI, "printer-uri", printer_uri)
    )
