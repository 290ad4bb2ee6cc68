from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from ..deps import get_openai, get_settings
from ..errors import VendorError, error_body

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stt"])


def recording_filename(original: Optional[str], content_type: str) -> str:
	"""Name the upload ``recording.<ext>`` so the vendor can sniff the format."""
	ext = ""
	if original and "." in original:
		ext = original.rsplit(".", 1)[1]
	if not ext and "/" in content_type:
		ext = content_type.split("/", 1)[1].split(";", 1)[0]
	return f"recording.{ext or 'webm'}"


@router.post("/stt")
@router.post("/transcribe")
async def transcribe(
	request: Request,
	file: Optional[UploadFile] = File(default=None),
	audio: Optional[UploadFile] = File(default=None),
):
	upload = file or audio
	if upload is None:
		raise HTTPException(status_code=400, detail="No audio file uploaded.")
	settings = get_settings(request)
	data = await upload.read()
	if not data:
		raise HTTPException(status_code=400, detail="No audio file uploaded.")
	if len(data) > settings.max_upload_bytes:
		raise HTTPException(status_code=413, detail="payload_too_large")

	content_type = upload.content_type or "audio/webm"
	client = get_openai(request)
	try:
		text = await client.transcribe(
			data,
			filename=recording_filename(upload.filename, content_type),
			content_type=content_type,
			language=settings.stt_language,
		)
	except VendorError as e:
		logger.error("[STT] %s %s", e, e.detail or "")
		status = e.vendor_status or 500
		return JSONResponse(status_code=status, content=error_body("transcribe_server_error", e.detail or str(e)))
	return {"text": text}
