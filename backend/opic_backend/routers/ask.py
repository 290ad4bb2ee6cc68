from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from ..deps import field_text, get_openai, get_settings, read_body
from ..errors import VendorError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ask"])


@router.post("/ask")
async def ask(request: Request):
	body = await read_body(request)
	# prompt wins over question when both are sent
	content = field_text(body, "prompt", "question")
	if not content:
		raise HTTPException(status_code=400, detail="question required")
	settings = get_settings(request)
	client = get_openai(request)
	try:
		answer = await client.chat(
			[
				{"role": "system", "content": settings.system_prompt},
				{"role": "user", "content": content},
			],
			temperature=settings.chat_temperature,
		)
	except VendorError as e:
		logger.error("[ASK] %s %s", e, e.detail or "")
		raise HTTPException(status_code=500, detail="server_error")
	return {"answer": answer}
