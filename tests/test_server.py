"""
Tests for the FastAPI proxy endpoints.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from opic_backend.main import create_app
from opic_backend.settings import Settings
from vendor_fakes import chat_reply, json_body


def _settings_without_keys(**overrides) -> Settings:
	values = dict(
		_env_file=None,
		openai_api_key=None,
		did_api_key=None,
		default_image_url=None,
		warmup_on_startup=False,
	)
	values.update(overrides)
	return Settings(**values)


class TestHealthEndpoint:
	def test_health(self, client):
		response = client.get("/health")
		assert response.status_code == 200
		data = response.json()
		assert data["ok"] is True
		assert data["origins"] == ["http://localhost:3000", "https://opic.example.com"]
		assert "/api/ask" in data["routes"]

	def test_health_under_api_prefix(self, client):
		assert client.get("/api/health").json()["ok"] is True

	def test_root(self, client):
		assert client.get("/").json() == {"service": "OPIC Backend", "ok": True}

	def test_unknown_route_envelope(self, client):
		response = client.get("/nope")
		assert response.status_code == 404
		assert response.json() == {"error": "not_found", "path": "/nope"}

	def test_default_origins_when_unset(self):
		settings = _settings_without_keys(allowed_origins="  ")
		assert "http://localhost:3000" in settings.origins()

	def test_unset_optional_settings_are_none(self):
		settings = _settings_without_keys()
		assert settings.openai_api_key is None
		assert settings.did_voice_id is None
		assert isinstance(settings.origins(), list)


class TestCors:
	def test_allowed_origin_echoed(self, client):
		response = client.get("/health", headers={"Origin": "https://opic.example.com"})
		assert response.headers["access-control-allow-origin"] == "https://opic.example.com"

	def test_disallowed_origin_gets_no_header(self, client):
		response = client.get("/health", headers={"Origin": "https://evil.example.com"})
		assert "access-control-allow-origin" not in response.headers

	def test_preflight_for_disallowed_origin_rejected(self, client):
		response = client.options(
			"/api/ask",
			headers={"Origin": "https://evil.example.com", "Access-Control-Request-Method": "POST"},
		)
		assert response.status_code == 400

	def test_preflight_for_allowed_origin(self, client):
		response = client.options(
			"/api/ask",
			headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
		)
		assert response.status_code == 200

	def test_unexpected_error_keeps_cors_header(self, client, vendors):
		def explode(request):
			raise RuntimeError("socket went away")

		vendors.on("POST", "/v1/chat/completions", explode)
		response = client.post("/ask", json={"question": "hi"}, headers={"Origin": "http://localhost:3000"})
		assert response.status_code == 500
		assert response.json() == {"error": "server_error"}
		assert response.headers["access-control-allow-origin"] == "http://localhost:3000"


class TestBodyLimit:
	def test_oversized_json_rejected(self, client, vendors):
		response = client.post("/ask", json={"question": "x" * 5000})
		assert response.status_code == 413
		assert response.json() == {"error": "payload_too_large"}
		assert vendors.calls == []

	def test_oversized_upload_rejected(self, client, vendors):
		response = client.post("/stt", files={"audio": ("a.webm", b"\0" * 4096, "audio/webm")})
		assert response.status_code == 413
		assert vendors.calls == []

	def test_chunked_body_counted_while_read(self, client, vendors):
		chunks = (part for part in [b'{"question": "', b"x" * 5000, b'"}'])
		response = client.post("/ask", content=chunks, headers={"Content-Type": "application/json"})
		assert response.status_code == 413
		assert response.json() == {"error": "payload_too_large"}
		assert vendors.calls == []

	def test_chunked_body_under_limit_passes(self, client, vendors):
		vendors.on("POST", "/v1/chat/completions", chat_reply("ok"))
		chunks = (part for part in [b'{"question": ', b'"hi"}'])
		response = client.post("/ask", content=chunks, headers={"Content-Type": "application/json"})
		assert response.status_code == 200
		assert response.json() == {"answer": "ok"}


class TestAsk:
	def test_missing_question(self, client):
		response = client.post("/ask", json={})
		assert response.status_code == 400
		assert response.json() == {"error": "question required"}

	def test_blank_question(self, client):
		assert client.post("/api/ask", json={"question": "   "}).status_code == 400

	def test_answer_relayed_with_system_prompt(self, client, vendors):
		vendors.on("POST", "/v1/chat/completions", chat_reply("I usually go hiking on weekends."))
		response = client.post("/api/ask", json={"question": "What do you do on weekends?"})

		assert response.status_code == 200
		assert response.json() == {"answer": "I usually go hiking on weekends."}
		body = json_body(vendors.calls[0])
		assert body["messages"][0] == {"role": "system", "content": "You are an OPIC examiner."}
		assert body["messages"][1] == {"role": "user", "content": "What do you do on weekends?"}
		assert body["temperature"] == 0.7

	def test_prompt_wins_over_question(self, client, vendors):
		vendors.on("POST", "/v1/chat/completions", chat_reply("ok"))
		client.post("/ask", json={"question": "q", "prompt": "p"})
		assert json_body(vendors.calls[0])["messages"][1]["content"] == "p"

	def test_form_body_accepted(self, client, vendors):
		vendors.on("POST", "/v1/chat/completions", chat_reply("ok"))
		response = client.post("/ask", data={"question": "Tell me about your home."})
		assert response.status_code == 200
		assert json_body(vendors.calls[0])["messages"][1]["content"] == "Tell me about your home."

	def test_vendor_failure_is_500(self, client, vendors):
		vendors.on("POST", "/v1/chat/completions", httpx.Response(503, json={"error": "overloaded"}))
		response = client.post("/ask", json={"question": "hi"})
		assert response.status_code == 500
		assert response.json() == {"error": "server_error"}

	def test_missing_key(self):
		client = TestClient(create_app(_settings_without_keys()))
		response = client.post("/ask", json={"question": "hi"})
		assert response.status_code == 500
		assert response.json() == {"error": "OPENAI_API_KEY missing"}

	def test_missing_question_checked_before_key(self):
		client = TestClient(create_app(_settings_without_keys()))
		assert client.post("/ask", json={}).status_code == 400


class TestSpeak:
	def _script_talk(self, vendors, *polls):
		vendors.on("POST", "/talks", httpx.Response(201, json={"id": "tlk_9", "status": "created"}))
		vendors.on("GET", "/talks/tlk_9", *polls)

	def test_missing_text(self, client):
		response = client.post("/speak", json={"imageUrl": "https://img/a.png"})
		assert response.status_code == 400
		assert response.json() == {"error": "text required"}

	def test_missing_image_without_default(self, vendors):
		settings = _settings_without_keys(did_api_key="k:s")
		client = TestClient(create_app(settings, transport=httpx.MockTransport(vendors)))
		response = client.post("/speak", json={"text": "hello"})
		assert response.status_code == 400
		assert response.json() == {"error": "imageUrl required"}

	def test_video_url_returned(self, client, vendors):
		self._script_talk(
			vendors,
			httpx.Response(200, json={"status": "started"}),
			httpx.Response(200, json={"status": "done", "result_url": "https://cdn/tlk_9.mp4"}),
		)
		response = client.post("/api/speak", json={"text": "Tell me about your house.", "imageUrl": "https://img/a.png"})

		assert response.status_code == 200
		assert response.json() == {"videoUrl": "https://cdn/tlk_9.mp4", "talkId": "tlk_9"}
		assert json_body(vendors.calls_to("/talks")[0])["source_url"] == "https://img/a.png"

	def test_default_image_used(self, client, vendors):
		self._script_talk(vendors, httpx.Response(200, json={"result_url": "https://cdn/v.mp4"}))
		client.post("/speak", json={"text": "hi"})
		assert json_body(vendors.calls_to("/talks")[0])["source_url"] == "https://cdn.example.com/avatar.png"

	def test_create_failure_is_502(self, client, vendors):
		vendors.on("POST", "/talks", httpx.Response(400, json={"kind": "ValidationError"}))
		response = client.post("/speak", json={"text": "hi"})
		assert response.status_code == 502
		assert response.json() == {"error": "did_create_failed", "detail": {"kind": "ValidationError"}}

	def test_talk_error_is_502(self, client, vendors):
		self._script_talk(vendors, httpx.Response(200, json={"status": "error"}))
		response = client.post("/speak", json={"text": "hi"})
		assert response.status_code == 502
		assert response.json()["error"] == "did_talk_failed"

	def test_timeout_after_poll_budget(self, client, vendors):
		self._script_talk(vendors, httpx.Response(200, json={"status": "started"}))
		response = client.post("/speak", json={"text": "hi"})

		assert response.status_code == 504
		assert response.json()["error"] == "did_timeout"
		# poll_max_attempts is 3 in the test settings
		assert len(vendors.calls_to("/talks/tlk_9")) == 3

	def test_speech_voice_name_not_sent_to_avatar(self, client, vendors):
		self._script_talk(vendors, httpx.Response(200, json={"result_url": "https://cdn/v.mp4"}))
		response = client.post("/speak", json={"text": "hi", "voice": "Shimmer"})
		assert response.status_code == 200
		assert "provider" not in json_body(vendors.calls_to("/talks")[0])["script"]

	def test_microsoft_voice_passed_through(self, client, vendors):
		self._script_talk(vendors, httpx.Response(200, json={"result_url": "https://cdn/v.mp4"}))
		client.post("/speak", json={"text": "hi", "voice": "en-US-JennyNeural"})
		script = json_body(vendors.calls_to("/talks")[0])["script"]
		assert script["provider"] == {"type": "microsoft", "voice_id": "en-US-JennyNeural"}

	def test_missing_key(self):
		settings = _settings_without_keys(default_image_url="https://img/a.png")
		client = TestClient(create_app(settings))
		response = client.post("/speak", json={"text": "hi"})
		assert response.status_code == 500
		assert response.json() == {"error": "D_ID_API_KEY missing"}


class TestTTS:
	def test_missing_text(self, client):
		response = client.post("/tts", json={"voice": "nova"})
		assert response.status_code == 400
		assert response.json() == {"error": "text required"}

	def test_audio_bytes_returned(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", httpx.Response(200, content=b"ID3mp3data"))
		response = client.post("/tts", json={"text": "Hello", "voice": "Nova"})

		assert response.status_code == 200
		assert response.content == b"ID3mp3data"
		assert response.headers["content-type"] == "audio/mpeg"
		assert response.headers["content-length"] == "10"
		assert response.headers["cache-control"] == "private, max-age=0, must-revalidate"
		body = json_body(vendors.calls[0])
		assert body == {"model": "tts-1", "voice": "nova", "input": "Hello", "response_format": "mp3"}

	def test_unknown_voice_uses_default(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", httpx.Response(200, content=b"x"))
		client.post("/tts", json={"text": "Hello", "voice": "darth"})
		assert json_body(vendors.calls[0])["voice"] == "shimmer"

	def test_repeat_within_ttl_served_from_cache(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", httpx.Response(200, content=b"ID3once"))
		first = client.post("/tts", json={"text": "Same words", "voice": "echo"})
		second = client.post("/api/tts", json={"text": "Same words", "voice": "echo"})

		assert first.content == second.content == b"ID3once"
		assert len(vendors.calls_to("/v1/audio/speech")) == 1

	def test_oldest_entry_evicted_at_capacity(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", lambda r: httpx.Response(200, content=json_body(r)["input"].encode()))
		for text in ("one", "two", "three"):
			client.post("/tts", json={"text": text})
		assert len(vendors.calls_to("/v1/audio/speech")) == 3

		# capacity is 2 in the test settings: "one" was evicted, "three" was not
		client.post("/tts", json={"text": "three"})
		assert len(vendors.calls_to("/v1/audio/speech")) == 3
		client.post("/tts", json={"text": "one"})
		assert len(vendors.calls_to("/v1/audio/speech")) == 4

	def test_fallback_voice_on_vendor_failure(self, client, vendors):
		def speech(request):
			if json_body(request)["voice"] == "sage":
				return httpx.Response(500, json={"error": "boom"})
			return httpx.Response(200, content=b"alloy-audio")

		vendors.on("POST", "/v1/audio/speech", speech)
		response = client.post("/tts", json={"text": "Hi", "voice": "sage"})
		assert response.status_code == 200
		assert response.content == b"alloy-audio"

	def test_vendor_status_relayed(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", httpx.Response(401, json={"error": {"message": "bad key"}}))
		response = client.post("/tts", json={"text": "Hi", "voice": "alloy"})
		assert response.status_code == 401
		assert response.json()["error"] == "tts_server_error"

	def test_missing_key(self):
		client = TestClient(create_app(_settings_without_keys()))
		response = client.post("/tts", json={"text": "Hi"})
		assert response.status_code == 500
		assert response.json() == {"error": "OPENAI_API_KEY missing"}


class TestTTSMedia:
	@pytest.fixture
	def audio_url(self, client, vendors):
		vendors.on("POST", "/v1/audio/speech", httpx.Response(200, content=b"0123456789"))
		response = client.post("/tts", json={"text": "Range me", "format": "url"})
		assert response.status_code == 200
		data = response.json()
		assert data["cached"] is False
		assert data["audioUrl"] == f"/media/tts/{data['id']}"
		return data["audioUrl"]

	def test_full_body(self, client, audio_url):
		response = client.get(audio_url)
		assert response.status_code == 200
		assert response.content == b"0123456789"
		assert response.headers["accept-ranges"] == "bytes"
		assert response.headers["content-length"] == "10"

	def test_second_url_request_is_cached(self, client, vendors, audio_url):
		response = client.post("/tts", json={"text": "Range me", "format": "url"})
		assert response.json()["cached"] is True
		assert response.json()["audioUrl"] == audio_url
		assert len(vendors.calls_to("/v1/audio/speech")) == 1

	def test_byte_range(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "bytes=2-5"})
		assert response.status_code == 206
		assert response.content == b"2345"
		assert response.headers["content-range"] == "bytes 2-5/10"
		assert response.headers["content-length"] == "4"

	def test_open_ended_range(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "bytes=7-"})
		assert response.status_code == 206
		assert response.content == b"789"

	def test_suffix_range(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "bytes=-3"})
		assert response.status_code == 206
		assert response.content == b"789"
		assert response.headers["content-range"] == "bytes 7-9/10"

	def test_range_end_clamped(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "bytes=8-100"})
		assert response.status_code == 206
		assert response.content == b"89"

	def test_unsatisfiable_range(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "bytes=20-30"})
		assert response.status_code == 416
		assert response.headers["content-range"] == "bytes */10"

	def test_malformed_range_serves_full_body(self, client, audio_url):
		response = client.get(audio_url, headers={"Range": "items=1-2"})
		assert response.status_code == 200
		assert response.content == b"0123456789"

	def test_head(self, client, audio_url):
		response = client.head(audio_url)
		assert response.status_code == 200
		assert response.content == b""
		assert response.headers["content-length"] == "10"
		assert response.headers["content-type"] == "audio/mpeg"

	def test_head_with_range(self, client, audio_url):
		response = client.head(audio_url, headers={"Range": "bytes=0-3"})
		assert response.status_code == 206
		assert response.headers["content-length"] == "4"

	def test_api_prefix(self, client, audio_url):
		assert client.get(f"/api{audio_url}").status_code == 200

	def test_unknown_id(self, client):
		response = client.get("/media/tts/deadbeef")
		assert response.status_code == 404
		assert response.json()["error"] == "not_found"


class TestSTT:
	def test_no_file(self, client):
		response = client.post("/stt", data={"lang": "en"})
		assert response.status_code == 400
		assert response.json() == {"error": "No audio file uploaded."}

	def test_audio_field(self, client, vendors):
		vendors.on("POST", "/v1/audio/transcriptions", httpx.Response(200, json={"text": "I live in Seoul."}))
		response = client.post("/transcribe", files={"audio": ("answer.m4a", b"\0\1\2", "audio/mp4")})

		assert response.status_code == 200
		assert response.json() == {"text": "I live in Seoul."}
		request = vendors.calls[0]
		assert b'filename="recording.m4a"' in request.content
		assert b'name="language"' in request.content

	def test_file_field_and_mime_extension(self, client, vendors):
		vendors.on("POST", "/v1/audio/transcriptions", httpx.Response(200, json={"text": "hi"}))
		response = client.post("/api/stt", files={"file": ("blob", b"\0\1", "audio/webm;codecs=opus")})
		assert response.status_code == 200
		assert b'filename="recording.webm"' in vendors.calls[0].content

	def test_vendor_status_relayed(self, client, vendors):
		vendors.on("POST", "/v1/audio/transcriptions", httpx.Response(400, json={"error": {"message": "Invalid file format."}}))
		response = client.post("/stt", files={"file": ("a.txt", b"not audio", "text/plain")})
		assert response.status_code == 400
		data = response.json()
		assert data["error"] == "transcribe_server_error"
		assert data["detail"] == {"error": {"message": "Invalid file format."}}

	def test_missing_key(self):
		client = TestClient(create_app(_settings_without_keys()))
		response = client.post("/stt", files={"file": ("a.webm", b"\0", "audio/webm")})
		assert response.status_code == 500
		assert response.json() == {"error": "OPENAI_API_KEY missing"}
