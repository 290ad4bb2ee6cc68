from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from ..deps import field_text, get_did, get_settings, read_body
from .tts import ALLOWED_VOICES

logger = logging.getLogger(__name__)

router = APIRouter(tags=["speak"])


@router.post("/speak")
async def speak(request: Request):
	"""Turn ``text`` into a lip-synced avatar video and return its URL.

	Creates a D-ID talk and polls it until the video is ready. Create and poll
	failures surface as 502, an exhausted polling budget as 504.
	"""
	body = await read_body(request)
	settings = get_settings(request)
	text = field_text(body, "text")
	image_url = field_text(body, "imageUrl", "image_url") or (settings.default_image_url or "")
	if not text:
		raise HTTPException(status_code=400, detail="text required")
	if not image_url:
		raise HTTPException(status_code=400, detail="imageUrl required")
	# D-ID wants a Microsoft voice id; the front-end's speech voice names do not apply here
	voice_id = field_text(body, "voice")
	if not voice_id or voice_id.lower() in ALLOWED_VOICES:
		voice_id = settings.did_voice_id

	client = get_did(request)
	talk_id = await client.create_talk(image_url, text, voice_id=voice_id)
	logger.info("[SPEAK] created talk %s", talk_id)
	video_url = await client.wait_for_result(
		talk_id,
		max_attempts=settings.poll_max_attempts,
		interval=settings.poll_interval_seconds,
	)
	return {"videoUrl": video_url, "talkId": talk_id}
