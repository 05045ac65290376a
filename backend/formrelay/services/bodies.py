"""Request body parsing for the form endpoints.

Multipart bodies are fed chunk by chunk to python-multipart's low-level
parser and every part is collected in memory, so an uploaded resume is
never spooled to a temporary file. The whole body is capped at
``MAX_BODY_BYTES``.
"""
from typing import Any, Dict, List, Optional, Tuple

from python_multipart import MultipartParser
from python_multipart.multipart import parse_options_header
from python_multipart.exceptions import MultipartParseError
from starlette.requests import Request

from formrelay.services.email import Attachment
from formrelay.services.intake import ValidationError

MAX_BODY_BYTES = 10 * 1024 * 1024

FORM_URLENCODED = "application/x-www-form-urlencoded"
MULTIPART = "multipart/form-data"


class Part:
    def __init__(self) -> None:
        self.headers: Dict[bytes, bytes] = {}
        self.data = bytearray()
        self.name = ""
        self.filename: Optional[str] = None
        self.content_type = "application/octet-stream"

    @property
    def is_file(self) -> bool:
        return self.filename is not None


class MultipartReader:
    """Collects the parts of one multipart/form-data body in memory."""

    def __init__(self, boundary: bytes):
        self.parts: List[Part] = []
        self.finished = False
        self._part = Part()
        self._header_field = bytearray()
        self._header_value = bytearray()
        self._parser = MultipartParser(
            boundary,
            {
                "on_part_begin": self._on_part_begin,
                "on_part_data": self._on_part_data,
                "on_part_end": self._on_part_end,
                "on_header_field": self._on_header_field,
                "on_header_value": self._on_header_value,
                "on_header_end": self._on_header_end,
                "on_headers_finished": self._on_headers_finished,
                "on_end": self._on_end,
            },
        )

    def _on_part_begin(self) -> None:
        self._part = Part()

    def _on_part_data(self, data: bytes, start: int, end: int) -> None:
        self._part.data += data[start:end]

    def _on_part_end(self) -> None:
        self.parts.append(self._part)

    def _on_header_field(self, data: bytes, start: int, end: int) -> None:
        self._header_field += data[start:end]

    def _on_header_value(self, data: bytes, start: int, end: int) -> None:
        self._header_value += data[start:end]

    def _on_header_end(self) -> None:
        self._part.headers[bytes(self._header_field).lower()] = bytes(self._header_value)
        self._header_field = bytearray()
        self._header_value = bytearray()

    def _on_headers_finished(self) -> None:
        part = self._part
        _, options = parse_options_header(part.headers.get(b"content-disposition", b""))
        part.name = options.get(b"name", b"").decode("utf-8", errors="replace")
        if b"filename" in options:
            part.filename = options[b"filename"].decode("utf-8", errors="replace")
        if b"content-type" in part.headers:
            part.content_type = part.headers[b"content-type"].decode("latin-1")

    def _on_end(self) -> None:
        self.finished = True

    def write(self, chunk: bytes) -> None:
        self._parser.write(chunk)

    def finalize(self) -> None:
        self._parser.finalize()


async def read_multipart(request: Request, file_field: Optional[str]) -> Tuple[Dict[str, Any], Optional[Attachment]]:
    _, options = parse_options_header(request.headers.get("content-type", ""))
    boundary = options.get(b"boundary")
    if not boundary:
        raise ValidationError("Invalid request body")

    reader = MultipartReader(boundary)
    received = 0
    try:
        async for chunk in request.stream():
            received += len(chunk)
            if received > MAX_BODY_BYTES:
                raise ValidationError("Request body too large", status_code=413)
            reader.write(chunk)
        reader.finalize()
    except MultipartParseError:
        raise ValidationError("Invalid request body") from None
    if not reader.finished:
        raise ValidationError("Invalid request body")

    fields: Dict[str, Any] = {}
    attachment = None
    for part in reader.parts:
        if not part.is_file:
            fields[part.name] = part.data.decode("utf-8", errors="replace")
        elif part.name == file_field and part.filename and attachment is None:
            attachment = Attachment(
                filename=part.filename,
                content=bytes(part.data),
                content_type=part.content_type,
            )
    return fields, attachment


async def read_fields(request: Request, file_field: Optional[str] = None) -> Tuple[Dict[str, Any], Optional[Attachment]]:
    """Parse a JSON, urlencoded or multipart body into (fields, attachment).

    Other content types yield no fields at all.
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith(MULTIPART):
        return await read_multipart(request, file_field)

    if content_type.startswith(FORM_URLENCODED):
        form = await request.form()
        return dict(form.items()), None

    if "json" in content_type:
        body = await request.body()
        if not body:
            return {}, None
        try:
            data = await request.json()
        except ValueError:
            raise ValidationError("Invalid request body") from None
        return (data if isinstance(data, dict) else {}), None

    return {}, None
