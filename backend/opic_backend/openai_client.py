from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import VendorError

logger = logging.getLogger(__name__)


class OpenAIClient:
	"""Thin async client for the OpenAI-compatible chat, speech and transcription APIs."""

	def __init__(
		self,
		api_key: str,
		*,
		base_url: str = "https://api.openai.com/v1",
		chat_model: str = "gpt-4o-mini",
		tts_model: str = "tts-1",
		stt_model: str = "whisper-1",
		fallback_voice: str = "alloy",
		timeout: float = 60.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		if not api_key:
			raise ValueError("OPENAI_API_KEY is not configured")
		self.api_key = api_key
		self.base_url = base_url.rstrip("/")
		self.chat_model = chat_model
		self.tts_model = tts_model
		self.stt_model = stt_model
		self.fallback_voice = fallback_voice
		self._client = httpx.AsyncClient(
			base_url=self.base_url,
			headers={"Authorization": f"Bearer {api_key}"},
			timeout=timeout,
			transport=transport,
		)

	async def chat(
		self,
		messages: List[Dict[str, str]],
		*,
		model: Optional[str] = None,
		temperature: Optional[float] = None,
	) -> str:
		payload: Dict[str, Any] = {"model": model or self.chat_model, "messages": messages}
		if temperature is not None:
			payload["temperature"] = temperature
		r = await self._post("/chat/completions", json=payload)
		data = self._json(r)
		try:
			return data["choices"][0]["message"]["content"] or ""
		except (KeyError, IndexError, TypeError):
			return ""

	async def speech(
		self,
		text: str,
		voice: str,
		*,
		model: Optional[str] = None,
		response_format: str = "mp3",
	) -> bytes:
		payload = {
			"model": model or self.tts_model,
			"voice": voice,
			"input": text,
			"response_format": response_format,
		}
		r = await self._post("/audio/speech", json=payload)
		return r.content

	async def synthesize(self, text: str, voice: str) -> Tuple[bytes, str]:
		"""Synthesize ``text``, retrying once with the fallback voice.

		Returns the audio and the voice that produced it.
		"""
		try:
			return await self.speech(text, voice), voice
		except VendorError as err:
			if voice == self.fallback_voice:
				raise
			logger.info("[TTS] voice %s failed (%s); retrying with %s", voice, err, self.fallback_voice)
		return await self.speech(text, self.fallback_voice), self.fallback_voice

	async def transcribe(
		self,
		data: bytes,
		*,
		filename: str = "recording.webm",
		content_type: str = "audio/webm",
		language: Optional[str] = None,
	) -> str:
		form: Dict[str, str] = {"model": self.stt_model}
		if language:
			form["language"] = language
		files = {"file": (filename, data, content_type)}
		r = await self._post("/audio/transcriptions", data=form, files=files)
		body = self._json(r)
		return str(body.get("text") or "")

	async def aclose(self) -> None:
		await self._client.aclose()

	async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
		try:
			r = await self._client.post(path, **kwargs)
		except httpx.RequestError as net_err:
			raise VendorError(f"OpenAI request failed: {net_err}", tag="vendor_unreachable") from net_err
		if r.is_error:
			raise VendorError(
				f"OpenAI {path} returned {r.status_code}",
				status_code=r.status_code,
				tag="vendor_error",
				detail=_safe_json(r),
				vendor_status=r.status_code,
			)
		return r

	@staticmethod
	def _json(r: httpx.Response) -> Dict[str, Any]:
		try:
			data = r.json()
		except ValueError:
			raise VendorError(f"Unexpected OpenAI response: {r.text[:200]}", tag="bad_vendor_response")
		if not isinstance(data, dict):
			raise VendorError("Unexpected OpenAI response shape", tag="bad_vendor_response")
		return data


def _safe_json(r: httpx.Response) -> Any:
	try:
		return r.json()
	except ValueError:
		return {"raw": r.text[:500]}
