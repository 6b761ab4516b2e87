"""
Bounded in-memory store for synthesized reply audio.

Replies carry an opaque audioRef; the clip itself is served from GET /audio/{ref}.
"""
from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class AudioClip:
    data: bytes
    mime_type: str


class AudioClipStore:
    """LRU: the least recently stored or read clip is evicted first."""

    def __init__(self, capacity: int = 256, public_base_url: str = ""):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self.public_base_url = public_base_url.rstrip("/")
        self._clips: "OrderedDict[str, AudioClip]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, data: bytes, mime_type: str = "audio/wav") -> str:
        ref = uuid.uuid4().hex
        with self._lock:
            self._clips[ref] = AudioClip(data=data, mime_type=mime_type)
            while len(self._clips) > self.capacity:
                self._clips.popitem(last=False)
        return ref

    def get(self, ref: str) -> Optional[AudioClip]:
        with self._lock:
            clip = self._clips.get(ref)
            if clip is not None:
                self._clips.move_to_end(ref)
            return clip

    def url_for(self, ref: str) -> str:
        return f"{self.public_base_url}/audio/{ref}"

    def __len__(self) -> int:
        with self._lock:
            return len(self._clips)
