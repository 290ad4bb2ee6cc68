from __future__ import annotations

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from ..deps import field_text, get_openai, get_settings, get_tts_cache, read_body
from ..errors import VendorError, error_body
from ..tts_cache import CachedAudio

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tts"])

ALLOWED_VOICES = frozenset({
	"nova", "shimmer", "echo", "onyx", "fable", "alloy", "ash", "sage", "coral",
})

NO_STORE = "private, max-age=0, must-revalidate"


def pick_voice(requested: Optional[str], default: str) -> str:
	wanted = (requested or default).strip().lower()
	return wanted if wanted in ALLOWED_VOICES else default


def parse_range(header: str, size: int) -> Optional[Tuple[int, int]]:
	"""Parse a single ``bytes=`` range against a body of ``size`` bytes.

	Returns an inclusive ``(start, end)`` pair, or None when the header is
	malformed (the caller then serves the full body).

	Raises:
		ValueError: If the range is well formed but unsatisfiable.
	"""
	value = header.strip().lower()
	if not value.startswith("bytes=") or "," in value:
		return None
	start_s, sep, end_s = value[len("bytes="):].partition("-")
	if not sep:
		return None
	start_s, end_s = start_s.strip(), end_s.strip()
	if not start_s and not end_s:
		return None
	if not (start_s or "0").isdigit() or not (end_s or "0").isdigit():
		return None
	if size == 0:
		raise ValueError("empty body")
	if not start_s:
		# suffix range: last N bytes
		length = int(end_s)
		if length == 0:
			raise ValueError("empty suffix range")
		return max(0, size - length), size - 1
	start = int(start_s)
	end = int(end_s) if end_s else size - 1
	if start >= size or end < start:
		raise ValueError("unsatisfiable range")
	return start, min(end, size - 1)


def _audio_response(entry: CachedAudio) -> Response:
	return Response(
		content=entry.audio,
		media_type=entry.content_type,
		headers={"Content-Length": str(entry.size), "Cache-Control": NO_STORE},
	)


@router.post("/tts")
async def tts(request: Request):
	body = await read_body(request)
	text = field_text(body, "text")
	if not text:
		raise HTTPException(status_code=400, detail="text required")
	settings = get_settings(request)
	cache = get_tts_cache(request)
	voice = pick_voice(field_text(body, "voice"), settings.tts_default_voice)
	as_url = field_text(body, "format").lower() == "url"

	entry = cache.lookup(text, voice)
	cached = entry is not None
	if entry is None:
		client = get_openai(request)
		try:
			audio, used_voice = await client.synthesize(text, voice)
		except VendorError as e:
			logger.error("[TTS] %s %s", e, e.detail or "")
			status = e.vendor_status or 500
			return JSONResponse(status_code=status, content=error_body("tts_server_error", e.detail))
		if used_voice != voice:
			logger.info("[TTS] served %s with fallback voice %s", voice, used_voice)
		# Cached under the requested voice so repeats skip the failing voice too
		entry = cache.put(text, voice, audio, "audio/mpeg")

	if as_url:
		return {"audioUrl": f"/media/tts/{entry.key}", "id": entry.key, "cached": cached}
	return _audio_response(entry)


@router.api_route("/media/tts/{audio_id}", methods=["GET", "HEAD"])
async def media_tts(audio_id: str, request: Request):
	"""Serve cached audio with byte-range support for seeking players."""
	entry = get_tts_cache(request).get(audio_id)
	if entry is None:
		raise HTTPException(status_code=404, detail="not_found")
	size = entry.size
	headers = {
		"Accept-Ranges": "bytes",
		"Cache-Control": NO_STORE,
		"ETag": f'"{entry.key}"',
		"Access-Control-Expose-Headers": "Content-Range, Accept-Ranges, Content-Length, ETag",
	}
	is_head = request.method == "HEAD"

	range_header = request.headers.get("range")
	span: Optional[Tuple[int, int]] = None
	if range_header:
		try:
			span = parse_range(range_header, size)
		except ValueError:
			return Response(status_code=416, headers={**headers, "Content-Range": f"bytes */{size}"})
		if span is None:
			logger.warning("[MEDIA] ignoring malformed Range header: %s", range_header)

	if span is None:
		headers["Content-Length"] = str(size)
		return Response(
			content=b"" if is_head else entry.audio,
			media_type=entry.content_type,
			headers=headers,
		)

	start, end = span
	headers["Content-Range"] = f"bytes {start}-{end}/{size}"
	headers["Content-Length"] = str(end - start + 1)
	return Response(
		content=b"" if is_head else entry.audio[start:end + 1],
		status_code=206,
		media_type=entry.content_type,
		headers=headers,
	)
