import json

from arth_chat.streaming.decoder import ByteDecoder
from arth_chat.streaming.frame_buffer import FrameBuffer


DOC = json.dumps(
    {
        "status": "SUCCESS",
        "body": {
            "message": "组合里 60% 是股票 {注意} \"集中度\"",
            "medias": [{"type": "IMAGE", "url": "https://x/y.png", "description": "饼图"}],
            "suggestedFollowUps": [{"content": "如何再平衡？"}],
        },
    },
    ensure_ascii=False,
)


def test_two_concatenated_objects():
    buf = FrameBuffer()
    frames = buf.push('{"a":1}{"a":2}')
    assert [f.value for f in frames] == [{"a": 1}, {"a": 2}]
    assert buf.pending == ""


def test_arbitrary_byte_splits_reproduce_single_frame():
    data = DOC.encode("utf-8")
    for cut in range(1, len(data)):
        dec = ByteDecoder()
        buf = FrameBuffer()
        frames = buf.push(dec.decode(data[:cut]))
        frames += buf.push(dec.decode(data[cut:]))
        frames += buf.push(dec.finish())
        assert len(frames) == 1
        assert frames[0].raw == DOC
        assert buf.pending == ""


def test_byte_at_a_time():
    data = DOC.encode("utf-8")
    dec = ByteDecoder()
    buf = FrameBuffer()
    frames = []
    for i in range(len(data)):
        frames += buf.push(dec.decode(data[i:i + 1]))
    assert len(frames) == 1
    assert frames[0].value["body"]["suggestedFollowUps"][0]["content"] == "如何再平衡？"


def test_partial_is_retained_until_complete():
    buf = FrameBuffer()
    assert buf.push('{"a":') == []
    assert buf.pending == '{"a":'
    frames = buf.push("1}")
    assert frames[0].value == {"a": 1}
    assert buf.pending == ""


def test_leading_junk_recovered_by_single_char_advance():
    buf = FrameBuffer()
    frames = buf.push('xx{"a":1}')
    assert [f.value for f in frames] == [{"a": 1}]
    assert frames[0].start == 2
    assert buf.recoveries == 2


def test_balanced_but_malformed_fragment_is_skipped():
    buf = FrameBuffer()
    frames = buf.push('{bad}{"a":1}')
    assert [f.value for f in frames] == [{"a": 1}]
    assert buf.recoveries == 5
    assert buf.pending == ""


def test_newline_delimited_frames():
    buf = FrameBuffer()
    frames = buf.push('{"a":1}\n{"a":2}\n')
    assert [f.value for f in frames] == [{"a": 1}, {"a": 2}]
    assert buf.pending == "\n"


def test_spans_are_absolute_across_pushes():
    buf = FrameBuffer()
    first = buf.push('{"a":1}')
    second = buf.push('{"b":2}')
    assert (first[0].start, first[0].end) == (0, 7)
    assert (second[0].start, second[0].end) == (7, 14)
    assert buf.frames_emitted == 2


def test_flush_returns_and_clears_remainder():
    buf = FrameBuffer()
    buf.push('{"a":1}not json')
    assert buf.flush() == "not json"
    assert buf.pending == ""
    assert buf.flush() == ""
