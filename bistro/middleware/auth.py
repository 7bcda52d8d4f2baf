"""
Bistro — JWT Authentication Middleware
Validates the Bearer token on all protected routes; returns 401 on failure.
"""
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from jose import JWTError

from bistro.core.security import decode_token

# Paths that do NOT require authentication
PUBLIC_PATHS = {
    "/health",
    "/metrics",
    "/",
    "/docs",
    "/openapi.json",
}

# Read-only paths open to anonymous callers, keyed by method
PUBLIC_ROUTES = {
    ("GET", "/reservations/availability"),
    ("GET", "/reservations/availability/day"),
}


def is_public(method: str, path: str) -> bool:
    if path in PUBLIC_PATHS or path.startswith("/metrics"):
        return True
    return (method, path.rstrip("/")) in PUBLIC_ROUTES


class JWTAuthMiddleware(BaseHTTPMiddleware):
    """
    Intercepts every request. Validates JWT Bearer token.
    Attaches decoded claims to request.state.user on success.
    On public routes a valid token is still decoded, an absent one is fine.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method == "OPTIONS":
            return await call_next(request)

        public = is_public(request.method, request.url.path)
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            if public:
                return await call_next(request)
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing or invalid Authorization header. Expected: Bearer <token>"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = auth_header.split(" ", 1)[1]
        try:
            claims = decode_token(token)
        except JWTError as exc:
            if public:
                return await call_next(request)
            return JSONResponse(
                status_code=401,
                content={"detail": f"Invalid or expired JWT: {str(exc)}"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not claims.get("sub"):
            return JSONResponse(
                status_code=401,
                content={"detail": "Token is missing the subject claim"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.user = claims
        return await call_next(request)
