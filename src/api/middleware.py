"""Request middleware for the validation API.

Every request gets an ``X-Request-ID`` (taken from the caller when supplied)
and an ``X-Process-Time`` header. Domain errors that escape a route are
mapped to status codes here so routes only handle the cases they expect.
"""

import logging
import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.domain.ports import RuleDefinitionError, RuleRepositoryError, StorageError

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log its timing."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        context = {
            "request_id": request_id,
            "endpoint": request.url.path,
            "client_ip": request.client.host if request.client else "unknown",
        }

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {elapsed:.3f}s", extra=context)
        return response


class DomainErrorMiddleware(BaseHTTPMiddleware):
    """Map uncaught domain errors to JSON responses.

    Status Codes:
        - RuleDefinitionError, ValueError: 400
        - RuleRepositoryError, StorageError: 503 (the engine is degraded,
          not the request)
        - anything else: 500
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = getattr(request.state, "request_id", None)
        try:
            return await call_next(request)
        except (RuleDefinitionError, ValueError) as e:
            logger.warning(f"Rejected request to {request.url.path}: {str(e)}")
            return JSONResponse(status_code=400, content={"error": "Bad Request", "detail": str(e), "requestId": request_id})
        except (RuleRepositoryError, StorageError) as e:
            logger.error(f"Storage unavailable for {request.url.path}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=503,
                content={"error": "Service Unavailable", "detail": "Rule or result storage unavailable", "requestId": request_id}
            )
        except Exception as e:
            logger.error(f"Unhandled error on {request.url.path}: {str(e)}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": "See server logs", "requestId": request_id}
            )


def setup_middleware(app: FastAPI) -> None:
    """Install middleware. Starlette runs the last added first, so the
    request context wraps error handling and every response carries its id.
    """
    app.add_middleware(DomainErrorMiddleware)
    app.add_middleware(RequestContextMiddleware)
