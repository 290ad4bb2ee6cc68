from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import Request

from .did_client import DIDClient
from .errors import ConfigError
from .openai_client import OpenAIClient
from .settings import Settings
from .tts_cache import TTSCache


async def read_body(request: Request) -> Dict[str, Any]:
	"""Return the request body as a dict, accepting JSON or form encoding.

	An empty, malformed or non-object body reads as ``{}`` so handlers
	report the missing field instead of a parse error.
	"""
	content_type = request.headers.get("content-type", "").lower()
	if content_type.startswith("application/x-www-form-urlencoded") or content_type.startswith("multipart/form-data"):
		form = await request.form()
		return {k: v for k, v in form.items() if isinstance(v, str)}
	raw = await request.body()
	if not raw:
		return {}
	try:
		data = json.loads(raw)
	except ValueError:
		return {}
	return data if isinstance(data, dict) else {}


def field_text(body: Dict[str, Any], *names: str) -> str:
	"""First non-null field among ``names``, stringified and stripped."""
	for name in names:
		value = body.get(name)
		if value is not None:
			return str(value).strip()
	return ""


def get_settings(request: Request) -> Settings:
	return request.app.state.settings


def get_openai(request: Request) -> OpenAIClient:
	client = getattr(request.app.state, "openai", None)
	if client is None:
		raise ConfigError("OPENAI_API_KEY")
	return client


def get_did(request: Request) -> DIDClient:
	client = getattr(request.app.state, "did", None)
	if client is None:
		raise ConfigError("D_ID_API_KEY")
	return client


def get_tts_cache(request: Request) -> TTSCache:
	return request.app.state.tts_cache
