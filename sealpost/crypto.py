"""Keypairs, sealed-box encryption, transport encoding and topic addressing.

Each keypair is a Curve25519 key pair stored as two single-line base64 files:
- <name>.key  private key, owner read/write only
- <name>.pub  public key, shared with senders

Frames are encrypted with PyNaCl sealed boxes, so a sender needs nothing but
the recipient's public key and the relay learns nothing but the topic.
"""

import binascii
import logging
import os
from base64 import b64decode, b64encode
from pathlib import Path
from typing import Optional, Protocol, Union

from nacl.encoding import HexEncoder
from nacl.exceptions import CryptoError
from nacl.hash import sha256
from nacl.public import PrivateKey, PublicKey, SealedBox

from .exceptions import DecryptionError, EncryptionError, FrameError, KeypairError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32


class Encryptor(Protocol):
    def encrypt(self, data: bytes, public_key: bytes) -> bytes: ...

    def decrypt(self, data: bytes, private_key: bytes) -> bytes: ...


class Hasher(Protocol):
    def hash(self, data: bytes) -> str: ...


class Codec(Protocol):
    def encode(self, data: bytes) -> str: ...

    def decode(self, text: Union[str, bytes]) -> bytes: ...


class SealedBoxEncryptor:
    """Anonymous public-key encryption (X25519 + XSalsa20-Poly1305)."""

    def encrypt(self, data: bytes, public_key: bytes) -> bytes:
        try:
            return bytes(SealedBox(PublicKey(public_key)).encrypt(data))
        except (CryptoError, ValueError, TypeError) as e:
            raise EncryptionError(f"Sealed box encryption failed: {e}") from e

    def decrypt(self, data: bytes, private_key: bytes) -> bytes:
        try:
            return SealedBox(PrivateKey(private_key)).decrypt(data)
        except (CryptoError, ValueError, TypeError) as e:
            raise DecryptionError(f"Sealed box decryption failed: {e}") from e


class Sha256Hasher:
    def hash(self, data: bytes) -> str:
        return sha256(data, encoder=HexEncoder).decode()


class Base64Codec:
    """Standard base64, strictly validated on decode."""

    def encode(self, data: bytes) -> str:
        return b64encode(data).decode()

    def decode(self, text: Union[str, bytes]) -> bytes:
        if isinstance(text, str):
            text = text.encode()
        try:
            return b64decode(text.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise FrameError(f"Invalid base64 payload: {e}") from e


def topic_id(public_key_bytes: bytes, hasher: Optional[Hasher] = None) -> str:
    """Relay topic for a public key artifact: the content hash of its bytes.

    Topics are not secret; anyone holding the public key can derive them.
    """
    return (hasher or Sha256Hasher()).hash(public_key_bytes)


def _decode_key(text: Union[str, bytes], path: Path) -> bytes:
    try:
        key = b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeypairError(f"{path} is not a base64 key: {e}") from e
    if len(key) != KEY_LENGTH:
        raise KeypairError(f"{path} holds {len(key)} bytes, expected {KEY_LENGTH}")
    return key


def load_public_key(path: Union[str, Path]) -> tuple[bytes, bytes]:
    """Read a public key artifact.

    Returns:
        (artifact bytes as stored, raw 32-byte public key). Topics are derived
        from the former.
    """
    path = Path(path)
    try:
        artifact = path.read_bytes()
    except OSError as e:
        raise KeypairError(f"Cannot read public key {path}: {e}") from e
    return artifact, _decode_key(artifact, path)


class Keypair:
    """A named Curve25519 key pair."""

    def __init__(self, name: str, private_key: bytes, public_key: Optional[bytes] = None,
                 public_artifact: Optional[bytes] = None):
        self.name = name
        self.private_key = private_key
        self.public_key = public_key or self.derive_public(private_key)
        self.public_artifact = public_artifact or f"{b64encode(self.public_key).decode()}\n".encode()

    @staticmethod
    def derive_public(private_key: bytes) -> bytes:
        return bytes(PrivateKey(private_key).public_key)

    @classmethod
    def generate(cls, name: str) -> "Keypair":
        sk = PrivateKey.generate()
        return cls(name, bytes(sk), bytes(sk.public_key))

    @classmethod
    def from_private_file(cls, keys_dir: Union[str, Path], name: str) -> "Keypair":
        """Rebuild a keypair from its private artifact alone."""
        private_path = Path(keys_dir) / f"{name}.key"
        try:
            private_text = private_path.read_bytes()
        except OSError as e:
            raise KeypairError(f"Cannot read private key {private_path}: {e}") from e
        return cls(name, _decode_key(private_text, private_path))

    @classmethod
    def load(cls, keys_dir: Union[str, Path], name: str) -> "Keypair":
        derived = cls.from_private_file(keys_dir, name)
        artifact, public_key = load_public_key(Path(keys_dir) / f"{name}.pub")
        if public_key != derived.public_key:
            raise KeypairError(f"{name}.pub does not match {name}.key")
        return cls(name, derived.private_key, public_key, public_artifact=artifact)

    @property
    def private_artifact(self) -> bytes:
        return f"{b64encode(self.private_key).decode()}\n".encode()

    def save(self, keys_dir: Union[str, Path]):
        """Write both artifacts. Existing keys are never overwritten."""
        keys_dir = Path(keys_dir)
        private_path = keys_dir / f"{self.name}.key"
        public_path = keys_dir / f"{self.name}.pub"
        if public_path.exists():
            raise KeypairError(f"{public_path} already exists")
        # The private file exists with 0600 before any key material reaches it
        try:
            fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        except FileExistsError as e:
            raise KeypairError(f"{private_path} already exists") from e
        except OSError as e:
            raise KeypairError(f"Cannot create {private_path}: {e}") from e
        with os.fdopen(fd, "wb") as f:
            f.write(self.private_artifact)
        try:
            self.save_public(keys_dir)
        except KeypairError:
            private_path.unlink(missing_ok=True)
            raise
        logger.info(f"Saved keypair '{self.name}' to {keys_dir}")

    def save_public(self, keys_dir: Union[str, Path], overwrite: bool = False):
        public_path = Path(keys_dir) / f"{self.name}.pub"
        if public_path.exists() and not overwrite:
            raise KeypairError(f"{public_path} already exists")
        try:
            public_path.write_bytes(self.public_artifact)
        except OSError as e:
            raise KeypairError(f"Cannot write {public_path}: {e}") from e

    @property
    def topic(self) -> str:
        return topic_id(self.public_artifact)
