"""Pytest fixtures: an app wired to scripted fakes of both vendor APIs."""

import httpx
import pytest
from fastapi.testclient import TestClient

from opic_backend.main import create_app
from opic_backend.settings import Settings
from vendor_fakes import FakeVendors


@pytest.fixture
def vendors() -> FakeVendors:
	return FakeVendors()


@pytest.fixture
def settings() -> Settings:
	return Settings(
		_env_file=None,
		openai_api_key="sk-test",
		openai_base_url="https://api.openai.test/v1",
		did_api_key="user@example.com:secret",
		did_base_url="https://api.d-id.test",
		default_image_url="https://cdn.example.com/avatar.png",
		poll_max_attempts=3,
		poll_interval_seconds=0,
		allowed_origins="http://localhost:3000,https://opic.example.com",
		tts_cache_limit=2,
		tts_cache_ttl_seconds=3600,
		max_body_bytes=4096,
		max_upload_bytes=2048,
		warmup_on_startup=False,
	)


@pytest.fixture
def app(settings, vendors):
	return create_app(settings, transport=httpx.MockTransport(vendors))


@pytest.fixture
def client(app):
	return TestClient(app)
