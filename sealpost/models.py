"""Checkpoint and report models."""

import time
from typing import Optional

from pydantic import BaseModel, Field


def now_unix() -> int:
    return int(time.time())


class Checkpoint(BaseModel):
    keypair: str
    since: int  # relay "since" value, unix seconds
    updated_at: int = Field(default_factory=now_unix)


class SendReport(BaseModel):
    topic: str
    chunk_size: int
    delay: float
    bytes_read: int = 0
    chunks: int = 0
    published: int = 0
    failed: int = 0


class ReceiveReport(BaseModel):
    topic: str
    since: Optional[int] = None
    frames: int = 0
    emitted: int = 0
    skipped: int = 0
