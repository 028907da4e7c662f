"""Sealpost client — send and receive encrypted messages through a public relay.

Usage:
    from sealpost.client import SealpostClient
    from sealpost.config import ClientConfig

    config = ClientConfig(keys_dir="~/.sealpost", relay_url="https://ntfy.sh")
    with SealpostClient(config) as client:
        # Create a keypair once; share bob.pub with senders
        client.keygen("bob")

        # Send a file to bob, 140 bytes per frame, one frame per second
        with open("notes.txt", "rb") as f:
            report = client.send("bob", [f])

        # Read everything addressed to bob since the last receive
        import sys
        client.receive("bob", sys.stdout.buffer)

        # Re-read the full history held by the relay
        client.receive("bob", sys.stdout.buffer, fetch_all=True)
"""

import logging
import time
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional, Union

import httpx

from .config import ClientConfig
from .crypto import (
    Base64Codec,
    Codec,
    Encryptor,
    Hasher,
    Keypair,
    SealedBoxEncryptor,
    Sha256Hasher,
    load_public_key,
    topic_id,
)
from .exceptions import ConfigurationError, KeypairError
from .marks import CheckpointStore, FileCheckpointStore, MarkTracker
from .models import ReceiveReport, SendReport
from .relay import HTTPClient, RelayPoller, RelayPublisher
from .transport import ChunkReassembler, ChunkSplitter, ConcatStream

logger = logging.getLogger(__name__)


class SealpostClient:
    """Wires keypairs, the relay and the chunk transport together."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        http_client: Optional[HTTPClient] = None,
        encryptor: Optional[Encryptor] = None,
        codec: Optional[Codec] = None,
        hasher: Optional[Hasher] = None,
        store: Optional[CheckpointStore] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
    ):
        """Create a client.

        Args:
            config: Paths, relay URL and transport policy (environment defaults if omitted)
            http_client: Anything shaped like `httpx.Client`; one is created and
                owned by this client when omitted
            encryptor, codec, hasher: Capabilities, PyNaCl/base64/SHA-256 by default
            store: Where marks live, `<keys_dir>/<name>.mark` files by default
            sleep: Pacing function used between chunks
            clock: Time source for marks
        """
        self.config = config or ClientConfig.from_env()
        policy = self.config.policy
        self._owns_http = http_client is None
        self.http = http_client or httpx.Client(timeout=self.config.timeout)
        self.encryptor = encryptor or SealedBoxEncryptor()
        self.codec = codec or Base64Codec()
        self.hasher = hasher or Sha256Hasher()

        self.publisher = RelayPublisher(self.http, self.config.relay_base)
        self.poller = RelayPoller(self.http, self.config.relay_base, strict=not policy.continue_on_error)
        self.splitter = ChunkSplitter(self.encryptor, self.codec, self.publisher, policy, sleep=sleep)
        self.reassembler = ChunkReassembler(self.encryptor, self.codec, policy)
        self.tracker = MarkTracker(store or FileCheckpointStore(self.config.keys_path), clock=clock)

    def close(self):
        if self._owns_http:
            self.http.close()

    def __enter__(self) -> "SealpostClient":
        return self

    def __exit__(self, *exc):
        self.close()

    # --- Keys & topics ---

    @staticmethod
    def _check_name(name: str):
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ConfigurationError(f"Invalid keypair name: {name!r}")

    def keygen(self, name: str) -> Keypair:
        """Create and save a new keypair."""
        self._check_name(name)
        self.config.ensure_dirs()
        keypair = Keypair.generate(name)
        keypair.save(self.config.keys_path)
        return keypair

    def rederive_public(self, name: str) -> Keypair:
        """Rewrite `<name>.pub` from `<name>.key`."""
        self._check_name(name)
        keypair = Keypair.from_private_file(self.config.keys_path, name)
        keypair.save_public(self.config.keys_path, overwrite=True)
        return keypair

    def resolve_recipient(self, recipient: Union[str, Path]) -> Path:
        """A recipient is a path to a public key file or a keypair name."""
        path = Path(recipient).expanduser()
        if path.is_file():
            return path
        named = self.config.public_key_path(str(recipient))
        if named.is_file():
            return named
        raise KeypairError(f"No public key for recipient '{recipient}' (tried {path} and {named})")

    def topic(self, recipient: Union[str, Path]) -> str:
        artifact, _ = load_public_key(self.resolve_recipient(recipient))
        return topic_id(artifact, self.hasher)

    # --- Messages ---

    def send(self, recipient: Union[str, Path], inputs: Iterable[BinaryIO],
             chunk_size: Optional[int] = None, delay: Optional[float] = None) -> SendReport:
        """Encrypt the concatenation of `inputs` to `recipient` and publish it."""
        artifact, public_key = load_public_key(self.resolve_recipient(recipient))
        topic = topic_id(artifact, self.hasher)
        return self.splitter.send(ConcatStream(inputs), public_key, topic,
                                  chunk_size=chunk_size, delay=delay)

    def receive(self, name: str, out: BinaryIO, fetch_all: bool = False) -> ReceiveReport:
        """Poll the keypair's topic and write every frame that opens to `out`.

        Without `fetch_all` the poll starts at the keypair's mark, which is
        left where it was. With `fetch_all`, or when there is no mark yet, the
        whole relay history is polled and the mark is set to the poll time.
        """
        self._check_name(name)
        self.config.ensure_dirs()
        keypair = Keypair.load(self.config.keys_path, name)
        topic = topic_id(keypair.public_artifact, self.hasher)

        since = self.tracker.since_for(name, fetch_all)
        started = self.tracker.now()
        report = ReceiveReport(topic=topic, since=since)

        frames = self.poller.poll(topic, since)
        for plaintext in self.reassembler.reassemble(frames, keypair.private_key, report):
            out.write(plaintext)
        out.flush()

        self.tracker.commit_checkpoint(name, fetch_all, now=started)
        logger.info(
            f"Received {report.emitted} frames for '{name}' "
            f"({report.skipped} skipped, since={since})"
        )
        return report
