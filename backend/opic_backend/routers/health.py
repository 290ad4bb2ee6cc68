from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])

PUBLIC_ROUTES = ["/api/ask", "/api/evaluate", "/api/speak", "/api/tts", "/api/stt", "/api/transcribe"]


@router.get("/health")
def health(request: Request):
	settings = request.app.state.settings
	return {
		"ok": True,
		"origins": settings.origins(),
		"routes": PUBLIC_ROUTES,
		"openai_configured": bool(settings.openai_api_key),
		"did_configured": bool(settings.did_api_key),
	}
