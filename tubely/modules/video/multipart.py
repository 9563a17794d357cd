"""Streaming multipart reader for video uploads.

The request body is parsed incrementally with python-multipart. A file
part's headers are handed to the caller before any of its bytes are kept,
so a rejected part is never buffered, and an accepted part is written
straight to the file object the caller returns.
"""

from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

MULTIPART_FORM_DATA = b"multipart/form-data"


class MultipartReadError(Exception):
    """Base exception for multipart reading errors."""

    pass


class MalformedFormError(MultipartReadError):
    """Raised when a body is not a well-formed multipart form."""

    pass


class PartTooLargeError(MultipartReadError):
    """Raised when the file part grows past its size limit."""

    pass


@dataclass(frozen=True)
class PartHeaders:
    """Headers of one form part."""
    name: str
    filename: str
    content_type: Optional[str]


def get_boundary(content_type: Optional[str]) -> bytes:
    """Return the boundary of a ``multipart/form-data`` Content-Type value.

    Raises:
        MalformedFormError: If the value is missing, of another type or has no boundary
    """
    if not content_type:
        raise MalformedFormError("Missing Content-Type header")
    media_type, params = parse_options_header(content_type)
    if media_type != MULTIPART_FORM_DATA:
        raise MalformedFormError(f"Expected multipart/form-data, got {media_type.decode('latin-1')}")
    boundary = params.get(b"boundary")
    if not boundary:
        raise MalformedFormError("Missing multipart boundary")
    return boundary


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace")


class MultipartFileReader:
    """Extracts one file field from a multipart body fed chunk by chunk.

    ``open_part`` is called with the headers of the first file part named
    ``field_name`` once they are complete. It returns the file object the
    part's data is written to, or raises to reject the part. Every other
    part is skipped without being stored. The reader never closes the
    file object it was given.
    """

    def __init__(
        self,
        boundary: bytes,
        field_name: str,
        open_part: Callable[[PartHeaders], BinaryIO],
        max_size: int,
    ):
        self.field_name = field_name
        self.open_part = open_part
        self.max_size = max_size
        self.part_size = 0

        self._events: list[tuple[str, bytes]] = []
        self._headers: dict[bytes, bytes] = {}
        self._header_field = b""
        self._header_value = b""
        self._target: Optional[BinaryIO] = None
        self._found = False
        self._complete = False

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": lambda: self._events.append(("part_begin", b"")),
                "on_header_field": self._on_data("header_field"),
                "on_header_value": self._on_data("header_value"),
                "on_header_end": lambda: self._events.append(("header_end", b"")),
                "on_headers_finished": lambda: self._events.append(("headers_finished", b"")),
                "on_part_data": self._on_data("part_data"),
                "on_part_end": lambda: self._events.append(("part_end", b"")),
                "on_end": lambda: self._events.append(("end", b"")),
            },
        )

    def _on_data(self, kind: str) -> Callable[[bytes, int, int], None]:
        # The parser reuses its buffer, so each slice is copied when queued
        def callback(data: bytes, start: int, end: int) -> None:
            self._events.append((kind, data[start:end]))

        return callback

    def feed(self, chunk: bytes) -> None:
        """Parse the next chunk of the body.

        Raises:
            MalformedFormError: If the chunk breaks the multipart syntax
            PartTooLargeError: If the file part passes ``max_size``
        """
        try:
            self._parser.write(chunk)
        except MultipartParseError as e:
            raise MalformedFormError(str(e)) from e

        events, self._events = self._events, []
        for kind, data in events:
            self._handle(kind, data)

    def finish(self) -> bool:
        """Finish parsing once the body is exhausted.

        Returns:
            True if the file part was received in full

        Raises:
            MalformedFormError: If the body ended before the closing boundary
        """
        try:
            self._parser.finalize()
        except MultipartParseError as e:
            raise MalformedFormError(str(e)) from e
        if self._target is not None or not self._complete:
            raise MalformedFormError("Body ended before the closing boundary")
        return self._found

    def _handle(self, kind: str, data: bytes) -> None:
        if kind == "part_begin":
            self._headers = {}
            self._header_field = b""
            self._header_value = b""
        elif kind == "header_field":
            self._header_field += data
        elif kind == "header_value":
            self._header_value += data
        elif kind == "header_end":
            self._headers[self._header_field.lower()] = self._header_value
            self._header_field = b""
            self._header_value = b""
        elif kind == "headers_finished":
            self._start_part()
        elif kind == "part_data":
            if self._target is not None:
                self.part_size += len(data)
                if self.part_size > self.max_size:
                    raise PartTooLargeError(f"File exceeds maximum size of {self.max_size} bytes")
                self._target.write(data)
        elif kind == "part_end":
            if self._target is not None:
                self._target = None
                self._found = True
        elif kind == "end":
            self._complete = True

    def _start_part(self) -> None:
        _, options = parse_options_header(self._headers.get(b"content-disposition", b""))
        name = _decode(options.get(b"name", b""))
        if name != self.field_name or self._found:
            return

        filename = options.get(b"filename")
        if filename is None:
            return
        content_type = self._headers.get(b"content-type")
        self._target = self.open_part(
            PartHeaders(
                name=name,
                filename=_decode(filename),
                content_type=_decode(content_type) if content_type is not None else None,
            )
        )
