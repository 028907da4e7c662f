"""Tests for chunk splitting, pacing, error policy and reassembly."""

import io
import math

import httpx
import pytest

from sealpost.config import TransportPolicy
from sealpost.crypto import Base64Codec, Keypair, SealedBoxEncryptor
from sealpost.exceptions import DecryptionError, PublishError
from sealpost.models import ReceiveReport
from sealpost.relay import RelayPublisher
from sealpost.transport import ChunkReassembler, ChunkSplitter, ConcatStream, iter_chunks

from .conftest import RELAY_URL, FakeEncryptor

KEY = b"k" * 32
OTHER_KEY = b"o" * 32


class TrickleStream:
    """Returns at most 7 bytes per read, like a slow pipe."""

    def __init__(self, data: bytes):
        self._buf = io.BytesIO(data)

    def read(self, size: int) -> bytes:
        return self._buf.read(min(size, 7))


def make_splitter(http_client, sleep, policy=None, encryptor=None):
    publisher = RelayPublisher(http_client, RELAY_URL)
    return ChunkSplitter(encryptor or FakeEncryptor(), Base64Codec(), publisher, policy, sleep=sleep)


def open_frames(frames, key=KEY):
    reassembler = ChunkReassembler(FakeEncryptor(), Base64Codec())
    return list(reassembler.reassemble(frames, key))


@pytest.mark.parametrize("size", [50, 140, 899, 900])
@pytest.mark.parametrize("length", [0, 1, 49, 50, 140, 1000, 2701])
def test_iter_chunks_partitions_input(size, length):
    data = bytes(i % 251 for i in range(length))
    chunks = list(iter_chunks(io.BytesIO(data), size))
    assert len(chunks) == math.ceil(length / size)
    assert all(0 < len(c) <= size for c in chunks)
    assert b"".join(chunks) == data


def test_short_reads_still_fill_chunks():
    data = b"x" * 300
    chunks = list(iter_chunks(TrickleStream(data), 140))
    assert [len(c) for c in chunks] == [140, 140, 20]


def test_concat_stream_crosses_file_boundaries():
    stream = ConcatStream([io.BytesIO(b"abc"), io.BytesIO(b""), io.BytesIO(b"defgh")])
    assert stream.read(4) == b"abcd"
    assert stream.read(4) == b"efgh"
    assert stream.read(4) == b""


def test_hello_is_one_chunk_one_publish(relay, http_client, sleep):
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"hello"), KEY, "t1", chunk_size=50)

    assert report.chunks == 1
    assert report.published == 1
    assert relay.posts == 1
    assert open_frames(relay.topics["t1"]) == [b"hello"]


def test_thousand_bytes_is_eight_paced_chunks_in_order(relay, http_client, sleep):
    data = bytes(range(256)) * 3 + b"z" * 232
    report = make_splitter(http_client, sleep).send(io.BytesIO(data), KEY, "t1", chunk_size=140, delay=1)

    assert report.chunks == 8
    assert report.bytes_read == 1000
    plaintexts = open_frames(relay.topics["t1"])
    assert [len(p) for p in plaintexts] == [140] * 7 + [20]
    assert b"".join(plaintexts) == data
    assert sleep.calls == [1] * 8


def test_publish_targets_topic_url(relay, http_client, sleep):
    make_splitter(http_client, sleep).send(io.BytesIO(b"hi"), KEY, "abc123")
    post = relay.requests[0]
    assert post.method == "POST"
    assert str(post.url) == f"{RELAY_URL}/abc123"


def test_empty_input_publishes_nothing(relay, http_client, sleep):
    report = make_splitter(http_client, sleep).send(io.BytesIO(b""), KEY, "t1")
    assert report.chunks == 0
    assert relay.requests == []
    assert sleep.calls == []


def test_out_of_range_chunk_size_uses_minimum(relay, http_client, sleep):
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"a" * 120), KEY, "t1", chunk_size=5000)
    assert report.chunk_size == 50
    assert [len(p) for p in open_frames(relay.topics["t1"])] == [50, 50, 20]


def test_negative_delay_is_clamped(http_client, sleep):
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"a"), KEY, "t1", delay=-3)
    assert report.delay == 0
    assert sleep.calls == [0]


def test_defaults_apply_when_unspecified(relay, http_client, sleep):
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"a" * 300), KEY, "t1")
    assert report.chunk_size == 140
    assert sleep.calls == [1.0, 1.0, 1.0]


def test_rejected_chunk_is_skipped_by_default(relay, http_client, sleep):
    relay.reject_posts = {2}
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"a" * 150), KEY, "t1", chunk_size=50)

    assert report.chunks == 3
    assert report.published == 2
    assert report.failed == 1
    assert relay.posts == 3
    assert len(sleep.calls) == 3


def test_unreachable_relay_is_skipped_by_default(relay, http_client, sleep):
    relay.unreachable = True
    report = make_splitter(http_client, sleep).send(io.BytesIO(b"a" * 100), KEY, "t1", chunk_size=50)
    assert report.failed == 2
    assert report.published == 0


def test_strict_policy_stops_at_first_failure(relay, http_client, sleep):
    relay.reject_posts = {2}
    splitter = make_splitter(http_client, sleep, policy=TransportPolicy(continue_on_error=False))
    with pytest.raises(PublishError):
        splitter.send(io.BytesIO(b"a" * 150), KEY, "t1", chunk_size=50)
    assert relay.posts == 2


def test_reassembler_skips_foreign_frames_and_continues(relay, http_client, sleep):
    splitter = make_splitter(http_client, sleep)
    splitter.send(io.BytesIO(b"first"), KEY, "t1")
    splitter.send(io.BytesIO(b"noise"), OTHER_KEY, "t1")
    splitter.send(io.BytesIO(b"second"), KEY, "t1")
    frames = relay.topics["t1"] + ["!!not base64!!"]

    report = ReceiveReport(topic="t1")
    reassembler = ChunkReassembler(FakeEncryptor(), Base64Codec())
    out = list(reassembler.reassemble(frames, KEY, report))

    assert out == [b"first", b"second"]
    assert (report.frames, report.emitted, report.skipped) == (4, 2, 2)


def test_reassembler_strict_raises(relay, http_client, sleep):
    make_splitter(http_client, sleep).send(io.BytesIO(b"noise"), OTHER_KEY, "t1")
    reassembler = ChunkReassembler(FakeEncryptor(), Base64Codec(), TransportPolicy(continue_on_error=False))
    with pytest.raises(DecryptionError):
        list(reassembler.reassemble(relay.topics["t1"], KEY))


def test_frame_whose_payload_is_not_base64_is_skipped():
    codec = Base64Codec()
    frame = codec.encode(FakeEncryptor().encrypt(b"%%%", KEY))
    assert open_frames([frame]) == []


@pytest.mark.parametrize("chunk", [b"hello", b"\x00\xff" * 450, "héllo wörld".encode()])
def test_sealed_frame_round_trip(http_client, sleep, chunk):
    keypair = Keypair.generate("bob")
    splitter = make_splitter(http_client, sleep, encryptor=SealedBoxEncryptor())
    frame = splitter.seal(chunk, keypair.public_key)
    reassembler = ChunkReassembler(SealedBoxEncryptor(), Base64Codec())

    assert reassembler.open(frame, keypair.private_key) == chunk
    assert list(reassembler.reassemble([frame], Keypair.generate("eve").private_key)) == []


def test_largest_frame_fits_relay_limit(http_client, sleep):
    keypair = Keypair.generate("bob")
    splitter = make_splitter(http_client, sleep, encryptor=SealedBoxEncryptor())
    frame = splitter.seal(b"\xff" * 900, keypair.public_key)
    assert len(frame.encode()) <= 4096


def test_transport_error_on_publish_is_publish_error(sleep):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(PublishError):
            RelayPublisher(client, RELAY_URL).publish("t1", "frame")
