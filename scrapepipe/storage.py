from __future__ import annotations

import base64
import json
import logging
import os
import queue
import threading
import time
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .errors import ConfigError, SinkError

logger = logging.getLogger(__name__)

FILENAME_ORIGIN = "origin"
FILENAME_RANDOM = "random"
EXTENSIONS = {"jpeg": ".jpeg", "mp4": ".mp4"}


class StorageBase(ABC):
    """Abstract base class for all sinks.

    Subclasses must implement store() and close(). store() raises SinkError
    on failure; callers log it and carry on.
    """

    @abstractmethod
    def store(self, content: bytes, suggested_name: str, mime_type: Optional[str] = None) -> None:
        """Persist one item."""

    def close(self) -> None:
        """Flush pending writes and release resources."""


class LocalDirectorySink(StorageBase):
    """Writes each item to its own file in a directory; existing files are kept."""

    def __init__(
        self,
        dirname: str,
        or_create: bool = False,
        filename: str = FILENAME_ORIGIN,
        ext: Optional[str] = None,
    ) -> None:
        if filename not in (FILENAME_ORIGIN, FILENAME_RANDOM):
            raise ConfigError(f"Unknown filename class {filename!r}")
        if ext is not None and ext not in EXTENSIONS:
            raise ConfigError(f"Unknown file extension {ext!r}")
        if not os.path.isdir(dirname):
            if not or_create:
                raise ConfigError(f"Directory {dirname!r} doesn't exist")
            try:
                os.makedirs(dirname, exist_ok=True)
            except OSError as exc:
                raise ConfigError(f"Cannot create directory {dirname!r}: {exc}") from exc
        self._dirname = dirname
        self._filename = filename
        self._ext = ext

    def prepare_filename(self, suggested_name: str) -> str:
        name = suggested_name if self._filename == FILENAME_ORIGIN else uuid.uuid4().hex[:10]
        if self._ext is not None:
            name += EXTENSIONS[self._ext]
        return name

    def store(self, content: bytes, suggested_name: str, mime_type: Optional[str] = None) -> None:
        path = os.path.join(self._dirname, self.prepare_filename(suggested_name))
        try:
            with open(path, "xb") as f:
                f.write(content)
        except FileExistsError:
            logger.info("Skip %s, file already exists", path)
            return
        except OSError as exc:
            raise SinkError(f"Failed to create file {path}: {exc}") from exc
        logger.info("Created new content in %s", path)


class JsonlSink(StorageBase):
    """Stores items as JSON Lines (.jsonl) using a background writer thread."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._queue: queue.Queue[Optional[Dict[str, Any]]] = queue.Queue()
        self._closed = False
        self._thread = threading.Thread(target=self._writer, daemon=True)
        self._thread.start()

    def store(self, content: bytes, suggested_name: str, mime_type: Optional[str] = None) -> None:
        """Enqueue an item for background writing."""
        if self._closed:
            raise SinkError(f"Sink {self._path} is closed")
        record: Dict[str, Any] = {
            "timestamp": time.time(),
            "name": suggested_name,
            "mime_type": mime_type,
        }
        try:
            record["content"] = content.decode("utf-8")
        except UnicodeDecodeError:
            record["content"] = base64.b64encode(content).decode("ascii")
            record["encoding"] = "base64"
        self._queue.put(record)

    def close(self) -> None:
        """Signal the writer thread to flush and stop."""
        if self._closed:
            return
        self._closed = True
        self._queue.put(None)
        self._thread.join(timeout=5)

    def _writer(self) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            while True:
                item = self._queue.get()
                if item is None:
                    break
                f.write(json.dumps(item, ensure_ascii=False) + "\n")
                f.flush()
