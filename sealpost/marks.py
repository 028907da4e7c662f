"""Per-keypair poll checkpoints ("marks").

A mark holds the relay `since` value used by incremental receives. Rules:

- No mark, or an explicit fetch-all request: poll the full relay history, then
  write a mark stamped with the time the poll started.
- Existing mark on an ordinary receive: poll from the stored `since`, then
  write the mark back with that same `since`. The mark does not advance, so
  repeated incremental receives keep polling from the same point until the
  operator asks for the full history again.

Marks are not locked; concurrent receives for one keypair race and the last
writer wins.
"""

import logging
import os
import time
from pathlib import Path
from typing import Callable, Optional, Protocol, Union

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import Checkpoint

logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    def get(self, key: str) -> Optional[Checkpoint]: ...

    def put(self, key: str, checkpoint: Checkpoint) -> None: ...


class MemoryCheckpointStore:
    def __init__(self):
        self._marks: dict[str, Checkpoint] = {}

    def get(self, key: str) -> Optional[Checkpoint]:
        return self._marks.get(key)

    def put(self, key: str, checkpoint: Checkpoint) -> None:
        self._marks[key] = checkpoint.model_copy()


class FileCheckpointStore:
    """One `<name>.mark` JSON file per keypair.

    The file's mtime is kept equal to `since`, and an empty mark file (as left
    by `touch`) is read from its mtime alone.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}.mark"

    def get(self, key: str) -> Optional[Checkpoint]:
        path = self.path_for(key)
        try:
            mtime = int(path.stat().st_mtime)
            raw = path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ConfigurationError(f"Cannot read mark file {path}: {e}") from e

        if not raw.strip():
            return Checkpoint(keypair=key, since=mtime, updated_at=mtime)
        try:
            return Checkpoint.model_validate_json(raw)
        except ValidationError as e:
            raise ConfigurationError(f"Corrupt mark file {path}: {e}") from e

    def put(self, key: str, checkpoint: Checkpoint) -> None:
        path = self.path_for(key)
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(checkpoint.model_dump_json())
            os.replace(tmp, path)
            os.utime(path, (checkpoint.since, checkpoint.since))
        except OSError as e:
            raise ConfigurationError(f"Cannot write mark file {path}: {e}") from e


class MarkTracker:
    def __init__(self, store: CheckpointStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    def load_checkpoint(self, keypair: str) -> Optional[int]:
        mark = self.store.get(keypair)
        return mark.since if mark else None

    def since_for(self, keypair: str, fetch_all: bool) -> Optional[int]:
        """The `since` filter for the next poll, or None for full history."""
        if fetch_all:
            return None
        return self.load_checkpoint(keypair)

    def commit_checkpoint(self, keypair: str, fetch_all: bool, now: Optional[int] = None) -> Checkpoint:
        """Record the end of a receive.

        `now` should be the time the poll started, so frames published while
        the poll was in flight are not skipped by the next incremental receive.
        """
        stamp = self.now() if now is None else now
        previous = self.store.get(keypair)
        if previous is not None and not fetch_all:
            # Non-advancing: rewrite the previous since unchanged
            mark = Checkpoint(keypair=keypair, since=previous.since, updated_at=stamp)
        else:
            mark = Checkpoint(keypair=keypair, since=stamp, updated_at=stamp)
        self.store.put(keypair, mark)
        logger.debug(f"Mark for '{keypair}' is now since={mark.since}")
        return mark
