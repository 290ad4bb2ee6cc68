"""In-memory TTL cache for synthesized speech, keyed by content hash and voice."""

from __future__ import annotations

import hashlib
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class CachedAudio:
	key: str
	voice: str
	audio: bytes
	content_type: str
	created_at: float

	@property
	def size(self) -> int:
		return len(self.audio)


class TTSCache:
	"""Insertion-ordered cache with a time-to-live and a capacity bound.

	Not locked: handlers run on one event loop and never await between a
	lookup and the matching write.
	"""

	def __init__(
		self,
		max_entries: int = 100,
		ttl_seconds: float = 3600.0,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._max_entries = max(1, max_entries)
		self._ttl = ttl_seconds
		self._clock = clock
		self._entries: OrderedDict[str, CachedAudio] = OrderedDict()

	@staticmethod
	def key(text: str, voice: str) -> str:
		return hashlib.md5(f"{voice}|{text}".encode("utf-8")).hexdigest()

	def _expired(self, entry: CachedAudio, now: float) -> bool:
		return self._ttl > 0 and now - entry.created_at >= self._ttl

	def get(self, key: str) -> Optional[CachedAudio]:
		entry = self._entries.get(key)
		if entry is None:
			return None
		if self._expired(entry, self._clock()):
			del self._entries[key]
			return None
		return entry

	def lookup(self, text: str, voice: str) -> Optional[CachedAudio]:
		return self.get(self.key(text, voice))

	def put(self, text: str, voice: str, audio: bytes, content_type: str = "audio/mpeg") -> CachedAudio:
		key = self.key(text, voice)
		entry = CachedAudio(
			key=key,
			voice=voice,
			audio=audio,
			content_type=content_type,
			created_at=self._clock(),
		)
		# Re-inserting counts as a new insertion for eviction order
		self._entries.pop(key, None)
		self._entries[key] = entry
		while len(self._entries) > self._max_entries:
			self._entries.popitem(last=False)
		return entry

	def purge_expired(self) -> int:
		now = self._clock()
		stale = [k for k, e in self._entries.items() if self._expired(e, now)]
		for k in stale:
			del self._entries[k]
		return len(stale)

	def clear(self) -> None:
		self._entries.clear()

	def __len__(self) -> int:
		return len(self._entries)

	def __contains__(self, key: object) -> bool:
		return isinstance(key, str) and self.get(key) is not None
