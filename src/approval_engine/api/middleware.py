"""
API middleware
"""
import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import jwt


logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Request logging middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        logger.info(
            f"Request started: {request.method} {request.url.path} "
            f"[request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration)

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"[request_id={request_id}] "
            f"[status={response.status_code}] "
            f"[duration={duration:.3f}s]"
        )

        return response


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Resolves the acting identity of a request.

    With auth enabled the identity comes from a bearer JWT (``sub`` and
    ``role`` claims). With auth disabled the caller states it through the
    ``X-Actor-Id`` and ``X-Actor-Role`` headers. Either way the result lands
    in ``request.state.actor``.
    """

    EXCLUDE_PATHS = [
        "/",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/v1/monitoring/health"
    ]

    def __init__(self, app, secret_key: str, algorithm: str = "HS256", disabled: bool = False):
        super().__init__(app)
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.disabled = disabled

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDE_PATHS:
            return await call_next(request)

        if self.disabled:
            request.state.actor = {
                "id": request.headers.get("X-Actor-Id", "anonymous"),
                "role": request.headers.get("X-Actor-Role")
            }
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "unauthorized",
                    "message": "Missing or invalid authorization header"
                }
            )

        token = authorization.split(" ", 1)[1]

        try:
            # exp is verified by PyJWT when present
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "token_expired",
                    "message": "Token has expired"
                }
            )
        except jwt.InvalidTokenError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "invalid_token",
                    "message": "Invalid token"
                }
            )

        if not payload.get("sub"):
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "invalid_token",
                    "message": "Token has no subject"
                }
            )

        request.state.actor = {
            "id": payload["sub"],
            "role": payload.get("role")
        }
        return await call_next(request)
