"""Sealpost development relay — an ntfy-compatible topic store for local use.

Implements only what the client consumes:
- POST /{topic}                          store one text message (≤ 4096 bytes)
- GET  /{topic}/raw?poll=1[&since=<ts>]  newline-separated message bodies
- GET  /v1/stats                         message count and size

Messages are opaque to the relay and expire after 12 hours.

Run standalone:  python run_relay.py --port 8080
"""

import asyncio
import logging
import re
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_TTL = 43200  # 12 hours
MAX_MESSAGE_BYTES = 4096
TOPIC_RE = re.compile(r"^[-_A-Za-z0-9]{1,64}$")


class PublishedMessage(BaseModel):
    id: str
    time: int
    event: str = "message"
    topic: str
    message: str


# --- Storage ---

class RelayStore:
    def __init__(self, db_path: str = "relay_data/relay.db", ttl_sec: int = DEFAULT_TTL):
        self.db_path = db_path
        self.ttl_sec = ttl_sec
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                topic TEXT NOT NULL,
                time INTEGER NOT NULL,
                message TEXT NOT NULL,
                expires_at REAL NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_topic_time
                ON messages(topic, time);
            CREATE INDEX IF NOT EXISTS idx_expires
                ON messages(expires_at);
        """)

    def publish(self, topic: str, message: str) -> PublishedMessage:
        now = time.time()
        msg = PublishedMessage(id=uuid.uuid4().hex[:12], time=int(now), topic=topic, message=message)
        self._conn.execute(
            "INSERT INTO messages (id, topic, time, message, expires_at) VALUES (?, ?, ?, ?, ?)",
            (msg.id, topic, msg.time, message, now + self.ttl_sec),
        )
        self._conn.commit()
        return msg

    def poll(self, topic: str, since: int = 0) -> list[str]:
        rows = self._conn.execute(
            """SELECT message FROM messages
               WHERE topic = ? AND time >= ? AND expires_at > ?
               ORDER BY rowid ASC""",
            (topic, since, time.time()),
        ).fetchall()
        return [r["message"] for r in rows]

    def cleanup_expired(self) -> int:
        cur = self._conn.execute(
            "DELETE FROM messages WHERE expires_at < ?",
            (time.time(),),
        )
        self._conn.commit()
        return cur.rowcount

    def stats(self) -> dict:
        row = self._conn.execute(
            "SELECT COUNT(*) as count, COALESCE(SUM(LENGTH(message)), 0) as bytes FROM messages"
        ).fetchone()
        return {"messages_held": row["count"], "total_bytes": row["bytes"]}

    def close(self):
        self._conn.close()


def parse_since(since: Optional[str]) -> int:
    if since is None or since == "all":
        return 0
    try:
        return int(since)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid since value '{since}'")


def check_topic(topic: str):
    if not TOPIC_RE.match(topic):
        raise HTTPException(status_code=400, detail="Invalid topic name")


# --- App ---

store: RelayStore = None


async def cleanup_loop():
    """Periodically remove expired messages."""
    while True:
        try:
            removed = store.cleanup_expired()
            if removed:
                logger.info(f"Cleaned up {removed} expired messages")
        except sqlite3.Error as e:
            logger.error(f"Cleanup error: {e}")
        await asyncio.sleep(300)  # every 5 minutes


@asynccontextmanager
async def lifespan(app: FastAPI):
    global store
    import os
    from pathlib import Path

    data_dir = getattr(app.state, "data_dir", "relay_data")
    Path(data_dir).mkdir(parents=True, exist_ok=True)
    db_path = os.path.join(data_dir, "relay.db")

    store = RelayStore(db_path)
    task = asyncio.create_task(cleanup_loop())

    stats = store.stats()
    logger.info(f"Holding {stats['messages_held']} messages ({stats['total_bytes']} bytes)")

    yield

    task.cancel()
    store.close()


relay_app = FastAPI(title="Sealpost Relay", version="0.1.0", lifespan=lifespan)


@relay_app.get("/v1/stats")
async def stats():
    """Public stats (no message content)."""
    return store.stats()


@relay_app.get("/{topic}/raw")
async def poll_topic(topic: str, since: Optional[str] = None):
    """Return held messages for a topic, one per line, oldest first.

    Every request is answered as a poll, so ntfy's `poll=1` is accepted and ignored.
    """
    check_topic(topic)
    messages = store.poll(topic, since=parse_since(since))
    body = "".join(f"{m}\n" for m in messages)
    return PlainTextResponse(body)


@relay_app.post("/{topic}")
async def publish(topic: str, request: Request) -> PublishedMessage:
    """Store one message body for a topic."""
    check_topic(topic)
    body = await request.body()
    if len(body) > MAX_MESSAGE_BYTES:
        raise HTTPException(status_code=413, detail="Message too large")
    try:
        text = body.decode()
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="Message must be UTF-8 text")
    if "\n" in text.strip():
        raise HTTPException(status_code=400, detail="Message must be a single line")
    msg = store.publish(topic, text.strip())
    logger.info(f"Published {msg.id} to {topic} ({len(body)} bytes)")
    return msg
