from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import VendorError, VendorTimeout

logger = logging.getLogger(__name__)

FAILED_STATUSES = ("error", "rejected")


def basic_auth_header(api_key: str) -> str:
	# D-ID keys are "user:password"; a bare key is sent as the username.
	raw = api_key.strip()
	if ":" not in raw:
		raw = raw + ":"
	return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


class DIDClient:
	"""Async client for the D-ID ``/talks`` create/poll job API."""

	def __init__(
		self,
		api_key: str,
		*,
		base_url: str = "https://api.d-id.com",
		timeout: float = 60.0,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		if not api_key:
			raise ValueError("D_ID_API_KEY is not configured")
		self.base_url = base_url.rstrip("/")
		self._client = httpx.AsyncClient(
			base_url=self.base_url,
			headers={"Authorization": basic_auth_header(api_key)},
			timeout=timeout,
			transport=transport,
		)

	async def create_talk(self, image_url: str, text: str, *, voice_id: Optional[str] = None) -> str:
		script: Dict[str, Any] = {"type": "text", "input": text}
		if voice_id:
			script["provider"] = {"type": "microsoft", "voice_id": voice_id}
		payload = {"source_url": image_url, "script": script}
		try:
			r = await self._client.post("/talks", json=payload)
		except httpx.RequestError as net_err:
			raise VendorError(f"D-ID create failed: {net_err}", tag="did_create_failed") from net_err
		data = self._json(r)
		if r.is_error:
			raise VendorError(
				f"D-ID create returned {r.status_code}",
				tag="did_create_failed",
				detail=data,
				vendor_status=r.status_code,
			)
		talk_id = data.get("id")
		if not talk_id:
			raise VendorError("D-ID create returned no id", tag="did_create_failed", detail=data)
		return str(talk_id)

	async def get_talk(self, talk_id: str) -> Dict[str, Any]:
		try:
			r = await self._client.get(f"/talks/{talk_id}")
		except httpx.RequestError as net_err:
			raise VendorError(f"D-ID poll failed: {net_err}", tag="did_poll_failed") from net_err
		data = self._json(r)
		if r.is_error:
			raise VendorError(
				f"D-ID poll returned {r.status_code}",
				tag="did_poll_failed",
				detail=data,
				vendor_status=r.status_code,
			)
		return data

	async def wait_for_result(self, talk_id: str, *, max_attempts: int = 24, interval: float = 1.25) -> str:
		"""Poll the talk until it has a ``result_url``.

		Sleeps ``interval`` seconds before each of at most ``max_attempts``
		polls. A vendor-reported failure raises straight away; running out of
		attempts raises :class:`VendorTimeout`.
		"""
		for attempt in range(1, max_attempts + 1):
			await asyncio.sleep(interval)
			data = await self.get_talk(talk_id)
			result_url = data.get("result_url")
			if result_url:
				logger.info("[SPEAK] talk %s done after %d poll(s)", talk_id, attempt)
				return str(result_url)
			status = str(data.get("status") or "").lower()
			if status in FAILED_STATUSES:
				raise VendorError(f"D-ID talk {talk_id} {status}", tag="did_talk_failed", detail=data)
		raise VendorTimeout(
			f"D-ID talk {talk_id} not ready after {max_attempts} polls",
			tag="did_timeout",
			detail={"talkId": talk_id, "attempts": max_attempts},
		)

	async def aclose(self) -> None:
		await self._client.aclose()

	@staticmethod
	def _json(r: httpx.Response) -> Dict[str, Any]:
		try:
			data = r.json()
		except ValueError:
			raise VendorError(
				f"D-ID returned non-JSON ({r.status_code})",
				tag="bad_vendor_response",
				detail={"raw": r.text[:500]},
				vendor_status=r.status_code,
			)
		if not isinstance(data, dict):
			raise VendorError("D-ID returned unexpected JSON", tag="bad_vendor_response", detail=data)
		return data
