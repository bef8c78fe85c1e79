from datetime import timedelta

import pytest

from tfworkspace.timeouts import OperationTimeouts, format_duration, insert_timeouts_meta

MIN = timedelta(minutes=1)

ALL = OperationTimeouts(create=MIN, update=2 * MIN, read=3 * MIN, delete=4 * MIN)


@pytest.mark.parametrize(
    "timeouts,expected",
    [
        (OperationTimeouts(), {}),
        (OperationTimeouts(read=3 * MIN), {"read": "3m0s"}),
        (ALL, {"create": "1m0s", "update": "2m0s", "read": "3m0s", "delete": "4m0s"}),
    ],
)
def test_as_parameter(timeouts, expected):
    assert timeouts.as_parameter() == expected


@pytest.mark.parametrize(
    "timeouts,expected",
    [
        (OperationTimeouts(), {}),
        (OperationTimeouts(read=3 * MIN), {"read": 180000000000}),
        (
            ALL,
            {
                "create": 60000000000,
                "update": 120000000000,
                "read": 180000000000,
                "delete": 240000000000,
            },
        ),
    ],
)
def test_as_metadata(timeouts, expected):
    assert timeouts.as_metadata() == expected


@pytest.mark.parametrize(
    "raw,timeouts,expected",
    [
        (None, OperationTimeouts(), None),
        (
            None,
            OperationTimeouts(read=2 * MIN),
            b'{"e2bfb730-ecaa-11e6-8f88-34363bc7c4c0":{"read":120000000000}}',
        ),
        (
            b"{}",
            OperationTimeouts(read=2 * MIN),
            b'{"e2bfb730-ecaa-11e6-8f88-34363bc7c4c0":{"read":120000000000}}',
        ),
        (
            b'{"some-key":"some-value"}',
            OperationTimeouts(read=2 * MIN),
            b'{"e2bfb730-ecaa-11e6-8f88-34363bc7c4c0":{"read":120000000000},"some-key":"some-value"}',
        ),
        (
            b'{"some-key":"some-value"}',
            OperationTimeouts(),
            b'{"some-key":"some-value"}',
        ),
        (
            b'{"e2bfb730-ecaa-11e6-8f88-34363bc7c4c0":{"create":240000000000,"read":120000000000},"some-key":"some-value"}',
            OperationTimeouts(read=MIN),
            b'{"e2bfb730-ecaa-11e6-8f88-34363bc7c4c0":{"create":240000000000,"read":60000000000},"some-key":"some-value"}',
        ),
    ],
)
def test_insert_timeouts_meta(raw, timeouts, expected):
    assert insert_timeouts_meta(raw, timeouts) == expected


def test_insert_timeouts_meta_malformed():
    with pytest.raises(ValueError, match="^cannot parse existing metadata"):
        insert_timeouts_meta(b"{malformed}", OperationTimeouts(read=2 * MIN))


@pytest.mark.parametrize(
    "value,expected",
    [
        (timedelta(0), "0s"),
        (timedelta(seconds=30), "30s"),
        (timedelta(minutes=2), "2m0s"),
        (timedelta(minutes=90), "1h30m0s"),
        (timedelta(seconds=1, milliseconds=500), "1.5s"),
        (timedelta(milliseconds=500), "500ms"),
        (timedelta(microseconds=1), "1µs"),
        (1, "1ns"),
        (timedelta(hours=1), "1h0m0s"),
    ],
)
def test_format_duration(value, expected):
    assert format_duration(value) == expected