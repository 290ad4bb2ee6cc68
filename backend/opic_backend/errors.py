"""Proxy exceptions and the handlers that turn them into JSON error envelopes."""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class VendorError(Exception):
	"""A vendor call failed.

	``status_code`` is what the proxy answers with, not necessarily the
	vendor's own status. ``tag`` is the short string echoed as ``error``.
	"""

	def __init__(
		self,
		message: str,
		*,
		status_code: int = 502,
		tag: str = "vendor_error",
		detail: Any = None,
		vendor_status: Optional[int] = None,
	) -> None:
		super().__init__(message)
		self.status_code = status_code
		self.tag = tag
		self.detail = detail
		self.vendor_status = vendor_status


class VendorTimeout(VendorError):
	"""The polling budget ran out before the vendor job finished."""

	def __init__(self, message: str, *, tag: str = "timeout", detail: Any = None) -> None:
		super().__init__(message, status_code=504, tag=tag, detail=detail)


class ConfigError(Exception):
	"""A vendor key the endpoint needs is not configured."""

	def __init__(self, setting: str) -> None:
		super().__init__(f"{setting} missing")
		self.setting = setting


class PayloadTooLarge(HTTPException):
	"""The request body grew past its ceiling while being read.

	An ``HTTPException`` so FastAPI's body parsing re-raises it untouched.
	"""

	def __init__(self) -> None:
		super().__init__(status_code=413, detail="payload_too_large")


def error_body(tag: str, detail: Any = None, **extra: Any) -> dict:
	body: dict = {"error": tag}
	if detail is not None:
		body["detail"] = detail
	body.update(extra)
	return body


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
	if exc.status_code == 404 and exc.detail == "Not Found":
		content = error_body("not_found", path=request.url.path)
	else:
		content = error_body(str(exc.detail))
	return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
	details = [
		{"loc": list(e.get("loc", [])), "msg": e.get("msg", "")}
		for e in exc.errors()
	]
	return JSONResponse(status_code=400, content=error_body("invalid_request", details))


async def _vendor_handler(request: Request, exc: VendorError) -> JSONResponse:
	logger.warning("[VENDOR] %s %s: %s", request.url.path, exc.tag, exc)
	return JSONResponse(status_code=exc.status_code, content=error_body(exc.tag, exc.detail))


async def _config_handler(request: Request, exc: ConfigError) -> JSONResponse:
	return JSONResponse(status_code=500, content=error_body(str(exc)))


async def _catch_uncaught(request: Request, call_next):
	# Runs inside CORSMiddleware so the 500 still carries the allow-origin header
	try:
		return await call_next(request)
	except Exception:
		logger.exception("[UNCAUGHT] %s", request.url.path)
		return JSONResponse(status_code=500, content=error_body("server_error"))


def install_error_handlers(app: FastAPI) -> None:
	app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
	app.add_exception_handler(RequestValidationError, _validation_handler)
	app.add_exception_handler(VendorError, _vendor_handler)
	app.add_exception_handler(ConfigError, _config_handler)
	app.middleware("http")(_catch_uncaught)
