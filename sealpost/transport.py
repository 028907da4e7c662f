"""Chunked frame transport over the relay.

Send path, per chunk of at most `chunk_size` plaintext bytes:

    chunk -> base64 -> sealed box -> base64 -> POST <relay>/<topic>

Receive path, per polled frame:

    frame -> base64 decode -> open sealed box -> base64 decode -> plaintext

A frame carries no sequence number or message id. The receiver's output is the
concatenation of every frame it can open, in poll order.
"""

import logging
import time
from typing import BinaryIO, Callable, Iterable, Iterator, Optional

from .config import TransportPolicy
from .crypto import Codec, Encryptor
from .exceptions import DecryptionError, FrameError, PublishError
from .models import ReceiveReport, SendReport
from .relay import RelayPublisher

logger = logging.getLogger(__name__)


class ConcatStream:
    """Read several binary streams back to back as one stream."""

    def __init__(self, streams: Iterable[BinaryIO]):
        self._streams = iter(streams)
        self._current = next(self._streams, None)

    def read(self, size: int) -> bytes:
        """Return exactly `size` bytes unless every stream is exhausted."""
        parts = []
        remaining = size
        while remaining > 0 and self._current is not None:
            data = self._current.read(remaining)
            if not data:
                self._current = next(self._streams, None)
                continue
            parts.append(data)
            remaining -= len(data)
        return b"".join(parts)


def iter_chunks(stream: BinaryIO, size: int) -> Iterator[bytes]:
    reader = stream if isinstance(stream, ConcatStream) else ConcatStream([stream])
    while True:
        chunk = reader.read(size)
        if not chunk:
            return
        yield chunk


class ChunkSplitter:
    """Split a byte stream into encrypted frames and publish them one by one."""

    def __init__(self, encryptor: Encryptor, codec: Codec, publisher: RelayPublisher,
                 policy: Optional[TransportPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.encryptor = encryptor
        self.codec = codec
        self.publisher = publisher
        self.policy = policy or TransportPolicy()
        self.sleep = sleep

    def seal(self, chunk: bytes, public_key: bytes) -> str:
        """Turn one plaintext chunk into a relay frame."""
        encoded = self.codec.encode(chunk).encode()
        return self.codec.encode(self.encryptor.encrypt(encoded, public_key))

    def send(self, stream: BinaryIO, public_key: bytes, topic: str,
             chunk_size: Optional[int] = None, delay: Optional[float] = None) -> SendReport:
        """Publish `stream` to `topic`, sleeping `delay` seconds after each chunk.

        Failed chunks are logged and skipped while the policy allows it;
        otherwise the first failure is raised and nothing further is sent.
        """
        size = self.policy.clamp_chunk_size(chunk_size)
        pause = self.policy.clamp_delay(delay)
        if chunk_size is not None and size != chunk_size:
            logger.warning(
                f"Chunk size {chunk_size} outside {self.policy.min_chunk}..{self.policy.max_chunk}, "
                f"using {size}"
            )
        report = SendReport(topic=topic, chunk_size=size, delay=pause)

        for chunk in iter_chunks(stream, size):
            report.chunks += 1
            report.bytes_read += len(chunk)
            try:
                frame = self.seal(chunk, public_key)
                resp = self.publisher.publish(topic, frame)
                if not resp.is_success:
                    raise PublishError(f"Relay rejected chunk: {resp.status_code} {resp.text}")
            except FrameError as e:
                report.failed += 1
                if not self.policy.continue_on_error:
                    raise
                logger.warning(f"Chunk {report.chunks} to {topic} not sent: {e}")
            else:
                report.published += 1
            self.sleep(pause)

        logger.info(
            f"Sent {report.published}/{report.chunks} chunks ({report.bytes_read} bytes) to {topic}"
        )
        return report


class ChunkReassembler:
    """Open polled frames with a private key, dropping those that do not open."""

    def __init__(self, encryptor: Encryptor, codec: Codec, policy: Optional[TransportPolicy] = None):
        self.encryptor = encryptor
        self.codec = codec
        self.policy = policy or TransportPolicy()

    def open(self, frame: str, private_key: bytes) -> bytes:
        try:
            ciphertext = self.codec.decode(frame)
            payload = self.encryptor.decrypt(ciphertext, private_key)
            return self.codec.decode(payload)
        except DecryptionError:
            raise
        except FrameError as e:
            raise DecryptionError(f"Undecodable frame: {e}") from e

    def reassemble(self, frames: Iterable[str], private_key: bytes,
                   report: Optional[ReceiveReport] = None) -> Iterator[bytes]:
        for frame in frames:
            if report is not None:
                report.frames += 1
            try:
                plaintext = self.open(frame, private_key)
            except DecryptionError as e:
                if not self.policy.continue_on_error:
                    raise
                if report is not None:
                    report.skipped += 1
                # Shared topics carry noise; frames for other keys land here too
                logger.debug(f"Skipping frame: {e}")
                continue
            if report is not None:
                report.emitted += 1
            yield plaintext
