from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .did_client import DIDClient
from .errors import PayloadTooLarge, error_body, install_error_handlers
from .openai_client import OpenAIClient
from .routers import ask, evaluate, health, speak, stt, tts
from .settings import Settings, settings as default_settings
from .tts_cache import TTSCache

logger = logging.getLogger(__name__)


async def _warm_up(client: OpenAIClient, voice: str) -> None:
	# One tiny chat and speech call so the first learner request is not cold
	try:
		logger.info("[Warmup] start")
		await client.chat([{"role": "user", "content": "ping"}], temperature=0.1)
		await client.speech("ready", voice)
		logger.info("[Warmup] done")
	except Exception as e:
		logger.info("[Warmup] skipped: %s", e)


@asynccontextmanager
async def _lifespan(app: FastAPI):
	settings: Settings = app.state.settings
	logger.info("Allowed origins: %s", ", ".join(settings.origins()))
	warmup: Optional[asyncio.Task] = None
	if settings.warmup_on_startup:
		if app.state.openai is None:
			logger.info("[Warmup] skipped: no key")
		else:
			warmup = asyncio.create_task(_warm_up(app.state.openai, settings.tts_default_voice))
	try:
		yield
	finally:
		if warmup is not None and not warmup.done():
			warmup.cancel()
		for client in (app.state.openai, app.state.did):
			if client is not None:
				await client.aclose()


class BodySizeLimit:
	"""Answer 413 once a request body passes its ceiling.

	Multipart uploads get ``max_upload_bytes``, everything else
	``max_body_bytes``. A declared ``Content-Length`` is checked up front;
	chunked bodies are counted as they are read and the endpoint's read
	raises ``PayloadTooLarge``.
	"""

	def __init__(self, app: ASGIApp, max_body_bytes: int, max_upload_bytes: int) -> None:
		self.app = app
		self.max_body_bytes = max_body_bytes
		self.max_upload_bytes = max_upload_bytes

	async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
		if scope["type"] != "http":
			await self.app(scope, receive, send)
			return

		headers = Headers(scope=scope)
		limit = self.max_body_bytes
		if headers.get("content-type", "").lower().startswith("multipart/form-data"):
			limit = self.max_upload_bytes
		declared = headers.get("content-length")
		if declared and declared.isdigit() and int(declared) > limit:
			response = JSONResponse(status_code=413, content=error_body("payload_too_large"))
			await response(scope, receive, send)
			return

		received = 0

		async def counted_receive() -> Message:
			nonlocal received
			message = await receive()
			if message["type"] == "http.request":
				received += len(message.get("body", b""))
				if received > limit:
					logger.warning("[LIMIT] %s body passed %d bytes", scope.get("path"), limit)
					raise PayloadTooLarge()
			return message

		await self.app(scope, counted_receive, send)


def create_app(
	settings: Optional[Settings] = None,
	*,
	transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
	"""Build the proxy app.

	``transport`` is handed to both vendor clients; tests pass an
	``httpx.MockTransport`` here.
	"""
	settings = settings or default_settings
	logging.basicConfig(
		level=settings.log_level.upper(),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)

	app = FastAPI(title="OPIC Backend", lifespan=_lifespan)
	app.state.settings = settings
	app.state.tts_cache = TTSCache(
		max_entries=settings.tts_cache_limit,
		ttl_seconds=settings.tts_cache_ttl_seconds,
	)
	app.state.openai = None
	if settings.openai_api_key:
		app.state.openai = OpenAIClient(
			settings.openai_api_key,
			base_url=settings.openai_base_url,
			chat_model=settings.chat_model,
			tts_model=settings.tts_model,
			stt_model=settings.stt_model,
			fallback_voice=settings.tts_fallback_voice,
			timeout=settings.vendor_timeout_seconds,
			transport=transport,
		)
	app.state.did = None
	if settings.did_api_key:
		app.state.did = DIDClient(
			settings.did_api_key,
			base_url=settings.did_base_url,
			timeout=settings.vendor_timeout_seconds,
			transport=transport,
		)

	# Middleware added later wraps earlier ones: CORS, then the uncaught-error
	# catcher, then the body ceiling next to the routes.
	app.add_middleware(
		BodySizeLimit,
		max_body_bytes=settings.max_body_bytes,
		max_upload_bytes=settings.max_upload_bytes,
	)
	install_error_handlers(app)
	app.add_middleware(
		CORSMiddleware,
		allow_origins=settings.origins(),
		allow_methods=["*"],
		allow_headers=["*"],
	)

	for prefix in ("", "/api"):
		app.include_router(health.router, prefix=prefix)
		app.include_router(ask.router, prefix=prefix)
		app.include_router(evaluate.router, prefix=prefix)
		app.include_router(speak.router, prefix=prefix)
		app.include_router(tts.router, prefix=prefix)
		app.include_router(stt.router, prefix=prefix)

	@app.get("/", include_in_schema=False)
	def root():
		return {"service": "OPIC Backend", "ok": True}

	return app


app = create_app()


def run() -> None:
	uvicorn.run("opic_backend.main:app", host="0.0.0.0", port=default_settings.port)


if __name__ == "__main__":
	run()
