"""Frame reassembly from arbitrarily chunked input."""

from __future__ import annotations

import random

import pytest

from aqbridge.domain.errors import MalformedFrameError
from aqbridge.domain.framing import FrameDecoder


def _drain(decoder: FrameDecoder) -> list[bytes]:
    frames = []
    while True:
        frame = decoder.next_frame()
        if frame is None and not decoder.has_pending:
            return frames
        if frame is not None:
            frames.append(frame)


def test_single_complete_frame() -> None:
    decoder = FrameDecoder()
    decoder.feed(b"O3,40,20,t,SN1!")

    assert decoder.next_frame() == b"O3,40,20,t,SN1"
    assert decoder.next_frame() is None
    assert decoder.partial_length == 0


def test_frame_split_across_chunks() -> None:
    decoder = FrameDecoder()

    decoder.feed(b"O3,4")
    assert decoder.next_frame() is None
    decoder.feed(b"0,20,t,")
    assert decoder.next_frame() is None
    assert decoder.partial_length == len(b"O3,40,20,t,")
    decoder.feed(b"SN1!")

    assert decoder.next_frame() == b"O3,40,20,t,SN1"


def test_empty_chunk_changes_nothing() -> None:
    decoder = FrameDecoder()
    decoder.feed(b"O3,")
    decoder.next_frame()

    decoder.feed(b"")

    assert decoder.next_frame() is None
    assert decoder.partial_length == 3
    assert not decoder.has_pending


def test_one_frame_per_call_keeps_the_rest_pending() -> None:
    decoder = FrameDecoder()
    decoder.feed(b"a!b!c")

    assert decoder.next_frame() == b"a"
    assert decoder.has_pending
    assert decoder.next_frame() == b"b"
    assert decoder.next_frame() is None
    assert not decoder.has_pending
    assert decoder.partial_length == 1

    decoder.feed(b"!")
    assert decoder.next_frame() == b"c"


def test_consecutive_delimiters_yield_empty_frame() -> None:
    decoder = FrameDecoder()
    decoder.feed(b"a!!")

    assert decoder.next_frame() == b"a"
    assert decoder.next_frame() == b""


def test_random_chunking_reproduces_every_frame() -> None:
    rng = random.Random(1234)
    frames = [f"NO2,{i},{i % 30},2024-01-01T00:00:{i % 60:02d},SN{i}".encode() for i in range(50)]
    stream = b"".join(frame + b"!" for frame in frames) + b"CO,1,2"

    decoder = FrameDecoder()
    out: list[bytes] = []
    pos = 0
    while pos < len(stream):
        size = rng.randint(0, 17)
        decoder.feed(stream[pos:pos + size])
        pos += size
        out.extend(_drain(decoder))

    assert out == frames
    assert decoder.partial_length == len(b"CO,1,2")


def test_frame_of_exactly_capacity_is_accepted() -> None:
    decoder = FrameDecoder(capacity=4)
    decoder.feed(b"abcd!")

    assert decoder.next_frame() == b"abcd"


def test_overflow_with_delimiter_in_same_chunk_resyncs_immediately() -> None:
    decoder = FrameDecoder(capacity=8)
    decoder.feed(b"0123456789ABC!good!")

    with pytest.raises(MalformedFrameError):
        decoder.next_frame()

    assert decoder.next_frame() == b"good"


def test_overflow_skips_input_until_next_delimiter() -> None:
    decoder = FrameDecoder(capacity=8)
    decoder.feed(b"0123456789")

    with pytest.raises(MalformedFrameError):
        decoder.next_frame()
    assert decoder.partial_length == 0

    decoder.feed(b"still-junk")
    assert decoder.next_frame() is None
    decoder.feed(b"tail!ok!")
    assert decoder.next_frame() is None
    assert decoder.next_frame() == b"ok"


def test_overflow_across_chunks() -> None:
    decoder = FrameDecoder(capacity=6)
    decoder.feed(b"abcd")
    assert decoder.next_frame() is None
    decoder.feed(b"efgh")

    with pytest.raises(MalformedFrameError):
        decoder.next_frame()


def test_reset_drops_partial_and_pending_bytes() -> None:
    decoder = FrameDecoder()
    decoder.feed(b"a!partial")
    decoder.next_frame()
    decoder.feed(b"x!y!")

    decoder.reset()

    assert decoder.partial_length == 0
    assert not decoder.has_pending
    decoder.feed(b"z!")
    assert decoder.next_frame() == b"z"


def test_custom_delimiter() -> None:
    decoder = FrameDecoder(delimiter=ord("\n"))
    decoder.feed(b"a!b\n")

    assert decoder.delimiter == ord("\n")
    assert decoder.next_frame() == b"a!b"


@pytest.mark.parametrize("kwargs", [{"delimiter": 256}, {"delimiter": -1}, {"capacity": 0}])
def test_invalid_arguments(kwargs) -> None:
    with pytest.raises(ValueError):
        FrameDecoder(**kwargs)
