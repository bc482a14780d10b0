# src/cloudtrail_processor/decoder.py

"""
Pull-style decoding of CloudTrail log files.

A log file is a gzip-compressed UTF-8 document shaped like
``{"Records": [ {...}, {...} ]}``. The decoder walks the ``Records`` array one
element at a time, so a file is never parsed into one big document:

    decoder = open_decoder(data, log, raw_record_info=False)
    try:
        while decoder.has_next():
            record = decoder.get_next()
    finally:
        decoder.close()

``has_next()`` moves the cursor past the separator in front of the next
element. Exactly one comma must separate two records, and the array must be
followed by the closing brace of the document.

Any malformed input (bad gzip data, invalid UTF-8, broken JSON, a record that
does not fit the event schema) raises ``LogParsingError`` and ends decoding of
the whole file.
"""

import gzip
import io
import json
import logging
import zlib
from typing import IO, Any

from pydantic import ValidationError

from .events import CloudTrailEvent, resolve_account_id
from .exceptions import LogParsingError
from .models import DeliveryMetadata, LogFileLocation, ProcessedRecord

logger = logging.getLogger(__name__)

RECORDS_KEY = "Records"
DEFAULT_CHUNK_SIZE = 64 * 1024

_WHITESPACE = frozenset(" \t\n\r")
_READ_ERRORS = (OSError, EOFError, zlib.error, UnicodeDecodeError)


class LogDecoder:
    """
    Streams records out of the decompressed text of one log file.

    Text is read in chunks; the part of the buffer already consumed is
    discarded whenever a new chunk arrives, so memory stays bounded by the
    largest single record. Delivery metadata carries no offsets.
    """

    def __init__(
        self,
        stream: IO[bytes],
        log: LogFileLocation,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._log = log
        self._reader = io.TextIOWrapper(stream, encoding="utf-8")
        self._chunk_size = chunk_size
        self._json = json.JSONDecoder()
        self._buffer = ""
        self._pos = 0
        self._eof = False
        self._opened = False
        self._after_element = False
        self._finished = False

    @property
    def log(self) -> LogFileLocation:
        return self._log

    def __enter__(self) -> "LogDecoder":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # --- Public cursor API ---

    def open(self) -> "LogDecoder":
        """Consumes ``{"Records": [`` or raises LogParsingError."""
        if self._opened:
            return self
        self._expect("{")
        if self._peek() != '"':
            raise self._error(f'Expected key "{RECORDS_KEY}" at the start of the log file')
        key, end = self._decode_at_cursor()
        if key != RECORDS_KEY:
            raise self._error(f'Expected key "{RECORDS_KEY}", found "{key}"')
        self._pos = end
        self._expect(":")
        self._expect("[")
        self._opened = True
        return self

    def has_next(self) -> bool:
        """
        Advances to the next array element; True if it starts an object or
        array. Consumes the closing ``]}`` once the array is exhausted.
        """
        if not self._opened:
            self.open()
        if self._finished:
            return False
        char = self._peek()
        if self._after_element:
            if char == ",":
                self._pos += 1
                char = self._peek()
                if char not in ("{", "["):
                    raise self._error(
                        f"Expected a record after ',' but found {self._describe(char)}"
                    )
                self._after_element = False
                return True
            if char != "]":
                raise self._error(f"Expected ',' or ']' but found {self._describe(char)}")
        elif char in ("{", "["):
            return True
        elif char != "]":
            raise self._error(f"Expected a record or ']' but found {self._describe(char)}")

        self._pos += 1
        self._expect("}")
        self._finished = True
        return False

    def get_next(self) -> ProcessedRecord:
        """Decodes the element under the cursor into a ProcessedRecord."""
        raw, end = self._decode_at_cursor()
        event = self._build_event(raw)
        delivery = self._delivery_metadata(self._pos, end)
        self._pos = end
        self._after_element = True
        return ProcessedRecord(event=event, delivery=delivery)

    def close(self) -> None:
        if not self._reader.closed:
            self._reader.close()

    # --- Record construction ---

    def _build_event(self, raw: Any) -> CloudTrailEvent:
        try:
            event = CloudTrailEvent.model_validate(raw)
        except ValidationError as e:
            raise self._error(f"Invalid CloudTrail record: {e}") from e

        account_id = resolve_account_id(event)
        if account_id is not None and account_id != event.account_id:
            event = event.model_copy(update={"account_id": account_id})
        return event

    def _delivery_metadata(self, start: int, end: int) -> DeliveryMetadata:
        return DeliveryMetadata(log=self._log)

    # --- Tokenizer primitives ---

    def _fill(self) -> bool:
        """Reads one more chunk into the buffer. False once the text is exhausted."""
        if self._eof:
            return False
        try:
            chunk = self._reader.read(self._chunk_size)
        except _READ_ERRORS as e:
            raise self._error(f"Unable to read log file: {e}") from e
        if not chunk:
            self._eof = True
            return False
        self._buffer = self._buffer[self._pos :] + chunk
        self._pos = 0
        return True

    def _peek(self) -> str | None:
        """Skips whitespace; returns the next character without consuming it."""
        while True:
            while self._pos < len(self._buffer) and self._buffer[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos < len(self._buffer):
                return self._buffer[self._pos]
            if not self._fill():
                return None

    def _expect(self, char: str) -> None:
        found = self._peek()
        if found != char:
            raise self._error(f"Expected '{char}' but found {self._describe(found)}")
        self._pos += 1

    @staticmethod
    def _describe(found: str | None) -> str:
        return "end of file" if found is None else f"'{found}'"

    def _decode_at_cursor(self) -> tuple[Any, int]:
        """
        Decodes the JSON value starting at the cursor, reading more text until
        the value is complete. Returns the value and the buffer index just
        past it; the cursor itself is left in place.
        """
        if self._peek() is None:
            raise self._error("Unexpected end of file")
        while True:
            try:
                return self._json.raw_decode(self._buffer, self._pos)
            except json.JSONDecodeError as e:
                if not self._fill():
                    raise self._error(f"Malformed JSON: {e.msg}") from e

    def _error(self, message: str) -> LogParsingError:
        return LogParsingError(
            message,
            context={"bucket": self._log.bucket, "key": self._log.object_key},
        )


class RawLogDecoder(LogDecoder):
    """
    Decodes a fully materialized log file so each record's exact source text
    and byte offsets can be attached to its delivery metadata.
    """

    def __init__(self, stream: IO[bytes], log: LogFileLocation, **kwargs):
        super().__init__(stream, log, **kwargs)
        # Char index -> byte offset, advanced incrementally as records go by.
        self._mark_char = 0
        self._mark_byte = 0

    def open(self) -> "RawLogDecoder":
        if not self._opened:
            try:
                self._buffer = self._reader.read()
            except _READ_ERRORS as e:
                raise self._error(f"Unable to read log file: {e}") from e
            self._eof = True
        super().open()
        return self

    def _byte_offset(self, char_index: int) -> int:
        self._mark_byte += len(self._buffer[self._mark_char : char_index].encode("utf-8"))
        self._mark_char = char_index
        return self._mark_byte

    def _delivery_metadata(self, start: int, end: int) -> DeliveryMetadata:
        start = self._buffer.index("{", start, end)
        raw_record = self._buffer[start:end]
        start_offset = self._byte_offset(start)
        # The end offset is the position of the closing brace.
        end_offset = start_offset + len(raw_record.encode("utf-8")) - 1
        return DeliveryMetadata(
            log=self._log,
            start_offset=start_offset,
            end_offset=end_offset,
            raw_record=raw_record,
        )


def open_decoder(data: bytes, log: LogFileLocation, raw_record_info: bool = False) -> LogDecoder:
    """
    Wraps the gzip-compressed content of a downloaded log file in a decoder
    and reads its header. The caller owns the returned decoder and must close
    it; on failure the stream is closed here and LogParsingError is raised.
    """
    decoder_cls = RawLogDecoder if raw_record_info else LogDecoder
    decoder = decoder_cls(gzip.GzipFile(fileobj=io.BytesIO(data), mode="rb"), log)
    try:
        decoder.open()
    except LogParsingError:
        decoder.close()
        raise
    logger.debug("Opened log file", extra={"log": str(log), "raw": raw_record_info})
    return decoder
