# tests/unit/test_decoder.py

import gzip
import io
import json

import pytest

from cloudtrail_processor.decoder import LogDecoder, RawLogDecoder, open_decoder
from cloudtrail_processor.exceptions import LogParsingError
from cloudtrail_processor.models import LogFileLocation

LOG = LogFileLocation(bucket="trail-bucket", object_key="AWSLogs/log.json.gz")


def _read_all(decoder: LogDecoder) -> list:
    records = []
    while decoder.has_next():
        records.append(decoder.get_next())
    return records


def _text_decoder(text: str, cls=LogDecoder, **kwargs) -> LogDecoder:
    return cls(io.BytesIO(text.encode("utf-8")), LOG, **kwargs).open()


class TestLogDecoder:
    def test_decodes_concrete_record(self, gzip_log, sample_event):
        # Arrange
        data = gzip_log([sample_event])

        # Act
        decoder = open_decoder(data, LOG)
        records = _read_all(decoder)
        decoder.close()

        # Assert
        assert len(records) == 1
        event = records[0].event
        assert event.event_name == "PutObject"
        assert event.account_id == "111122223333"
        assert records[0].delivery.log == LOG
        assert records[0].delivery.start_offset == -1
        assert records[0].delivery.end_offset == -1
        assert records[0].delivery.raw_record is None

    def test_preserves_record_order(self, gzip_log, make_events):
        events = make_events(25)

        with open_decoder(gzip_log(events), LOG) as decoder:
            records = _read_all(decoder)

        assert [r.event.event_name for r in records] == [e["eventName"] for e in events]

    def test_records_larger_than_a_chunk(self, make_events):
        events = make_events(5)
        for event in events:
            event["requestParameters"] = {"padding": "x" * 500}
        text = json.dumps({"Records": events}, indent=2)

        decoder = _text_decoder(text, chunk_size=16)

        assert [r.event.event_name for r in _read_all(decoder)] == [
            e["eventName"] for e in events
        ]

    def test_empty_records_array(self):
        decoder = _text_decoder('{"Records": []}')
        assert decoder.has_next() is False

    def test_has_next_opens_lazily(self, sample_event):
        text = json.dumps({"Records": [sample_event]})
        decoder = LogDecoder(io.BytesIO(text.encode()), LOG)

        assert decoder.has_next() is True
        assert decoder.get_next().event.event_source == "s3.amazonaws.com"
        assert decoder.has_next() is False

    def test_account_id_takes_precedence_over_record_field(self):
        text = json.dumps(
            {"Records": [{"recipientAccountId": "A", "accountId": "Z"}, {"accountId": "Z"}]}
        )
        records = _read_all(_text_decoder(text))

        assert records[0].event.account_id == "A"
        assert records[1].event.account_id == "Z"

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "[]",
            '{"Events": []}',
            '{"Records": {}}',
            '{"Records" []}',
            "not json at all",
        ],
    )
    def test_rejects_unsupported_top_level_shape(self, text):
        with pytest.raises(LogParsingError) as exc_info:
            _text_decoder(text)

        assert exc_info.value.context == {
            "bucket": "trail-bucket",
            "key": "AWSLogs/log.json.gz",
        }

    def test_malformed_record_aborts_the_file(self, gzip_log, sample_event):
        # Second record has an unterminated nested object.
        text = '{"Records": [' + json.dumps(sample_event) + ', {"userIdentity": {"type": "x"'
        decoder = open_decoder(gzip_log(text=text), LOG)

        assert decoder.has_next()
        decoder.get_next()
        assert decoder.has_next()
        with pytest.raises(LogParsingError, match="Malformed JSON"):
            decoder.get_next()

    def test_invalid_event_time_is_a_parse_error(self):
        decoder = _text_decoder('{"Records": [{"eventTime": "yesterday"}]}')

        assert decoder.has_next()
        with pytest.raises(LogParsingError, match="Invalid CloudTrail record"):
            decoder.get_next()

    def test_array_element_is_a_parse_error(self):
        decoder = _text_decoder('{"Records": [[1, 2]]}')

        assert decoder.has_next()
        with pytest.raises(LogParsingError):
            decoder.get_next()

    def test_close_is_idempotent(self):
        decoder = _text_decoder('{"Records": []}')
        decoder.close()
        decoder.close()


class TestRawLogDecoder:
    def test_raw_record_and_offsets(self, gzip_log):
        first = '{"eventName": "First", "note": "café"}'
        second = '{"eventName":"Second"}'
        text = '{"Records": [\n  ' + first + ",\n  " + second + "\n]}"
        data = text.encode("utf-8")

        with open_decoder(gzip_log(text=text), LOG, raw_record_info=True) as decoder:
            records = _read_all(decoder)

        assert [r.delivery.raw_record for r in records] == [first, second]
        for record, raw in zip(records, (first, second)):
            start, end = record.delivery.start_offset, record.delivery.end_offset
            # Offsets are byte positions of the opening and closing braces.
            assert data[start : end + 1] == raw.encode("utf-8")
        assert records[0].event.get("note") == "café"

    def test_raw_decoder_type(self, gzip_log):
        decoder = open_decoder(gzip_log([]), LOG, raw_record_info=True)
        assert isinstance(decoder, RawLogDecoder)
        decoder.close()

    def test_raw_decoder_rejects_malformed_json(self):
        with pytest.raises(LogParsingError):
            _read_all(_text_decoder('{"Records": [{"a": }]}', cls=RawLogDecoder))


@pytest.mark.parametrize("cls", [LogDecoder, RawLogDecoder])
@pytest.mark.parametrize(
    "text",
    [
        '{"Records": [{"eventName": "A"} {"eventName": "B"}]}',
        '{"Records": [{"eventName": "A"},, {"eventName": "B"}]}',
        '{"Records": [{"eventName": "A"},]}',
        '{"Records": [{"eventName": "A"}}',
        '{"Records": [{"eventName": "A"}]]',
        '{"Records": [{"eventName": "A"}',
        '{"Records": [, {"eventName": "A"}]}',
        '{"Records": ["A"]}',
    ],
    ids=[
        "missing-comma",
        "double-comma",
        "trailing-comma",
        "wrong-array-closer",
        "wrong-object-closer",
        "unterminated-array",
        "leading-comma",
        "scalar-element",
    ],
)
def test_malformed_separators_fail_the_file(cls, text):
    with pytest.raises(LogParsingError):
        _read_all(_text_decoder(text, cls=cls))


@pytest.mark.parametrize("cls", [LogDecoder, RawLogDecoder])
def test_whitespace_between_separators_is_accepted(cls):
    text = '{ "Records" : [ {"eventName": "A"} ,\n\t{"eventName": "B"} ] }\n'

    records = _read_all(_text_decoder(text, cls=cls))

    assert [r.event.event_name for r in records] == ["A", "B"]


def test_has_next_stays_false_after_the_array_closes():
    decoder = _text_decoder('{"Records": [{"eventName": "A"}]}')

    assert len(_read_all(decoder)) == 1
    assert decoder.has_next() is False


class TestOpenDecoder:
    def test_rejects_data_that_is_not_gzip(self):
        with pytest.raises(LogParsingError, match="Unable to read log file"):
            open_decoder(b'{"Records": []}', LOG)

    def test_rejects_truncated_gzip(self, gzip_log, sample_event):
        data = gzip_log([sample_event] * 50)

        with pytest.raises(LogParsingError):
            decoder = open_decoder(data[: len(data) // 2], LOG)
            _read_all(decoder)

    def test_rejects_invalid_utf8(self):
        with pytest.raises(LogParsingError):
            open_decoder(gzip.compress(b'{"Records": ["\xff\xfe"]}'), LOG, raw_record_info=True)
