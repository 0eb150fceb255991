from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

OPEN_PATHS = ("/docs", "/openapi.json", "/healthz")


class AuthMiddleware(BaseHTTPMiddleware):
    """Require the shared API key in the X-API-Key header."""

    def __init__(self, app, token: str):
        super().__init__(app)
        self.token = token

    async def dispatch(self, request: Request, call_next):
        if request.url.path.startswith(OPEN_PATHS):
            return await call_next(request)

        auth_header = request.headers.get("X-API-Key")
        if auth_header != self.token:
            return JSONResponse(status_code=403, content={"code": 403, "msg": "Unauthorized"})
        return await call_next(request)
