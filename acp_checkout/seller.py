"""
ACP Seller Router Factory.

``create_seller_router()`` exposes a ``CheckoutLifecycle`` as the five ACP
checkout endpoints on a FastAPI APIRouter, and
``register_exception_handlers()`` renders every failure as a flat ACP error.

Usage:
    router = create_seller_router(lifecycle, settings)
    app.include_router(router)
    register_exception_handlers(app)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from acp_checkout.config import Settings
from acp_checkout.errors import (
    ACPSellerError,
    AuthenticationError,
    ProcessingError,
    ValidationError,
    json_path,
)
from acp_checkout.lifecycle import CheckoutLifecycle, LifecycleResponse
from acp_checkout.models import (
    CheckoutSession,
    CheckoutSessionCancelRequest,
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionUpdateRequest,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    idempotency_key: Optional[str] = None
    request_id: Optional[str] = None


def _validate_api_version(api_version: Optional[str], supported: frozenset[str]) -> None:
    if not api_version:
        raise ValidationError(
            "Missing API-Version header",
            code="missing_api_version",
            param="$.headers.API-Version",
        )
    if api_version not in supported:
        raise ValidationError(
            f"Unsupported API-Version '{api_version}'",
            code="unsupported_api_version",
            param="$.headers.API-Version",
        )


def _validate_bearer_token(authorization: Optional[str], api_keys: frozenset[str]) -> str:
    """Extract the bearer token and, when keys are configured, check it."""
    if not authorization or not authorization.startswith("Bearer ") or not authorization[7:]:
        raise AuthenticationError(
            "Missing or invalid Authorization header",
            param="$.headers.Authorization",
        )
    token = authorization[7:]
    if api_keys and not any(hmac.compare_digest(token, key) for key in api_keys):
        raise AuthenticationError("Invalid API key", code="invalid_api_key", param="$.headers.Authorization")
    return token


def sign_payload(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = timestamp.encode("utf-8") + b"." + raw_body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _verify_signature(
    raw_body: bytes,
    signature: Optional[str],
    timestamp: Optional[str],
    settings: Settings,
) -> None:
    if not settings.signature_secret:
        return
    if not signature:
        raise AuthenticationError(
            "Missing Signature header", code="missing_signature", param="$.headers.Signature"
        )
    try:
        issued_at = int(timestamp or "")
    except ValueError:
        raise AuthenticationError(
            "Missing or malformed Timestamp header",
            code="invalid_timestamp",
            param="$.headers.Timestamp",
        ) from None
    if abs(time.time() - issued_at) > settings.signature_tolerance_seconds:
        raise AuthenticationError(
            "Request timestamp is outside the allowed tolerance",
            code="invalid_timestamp",
            param="$.headers.Timestamp",
        )
    expected = sign_payload(settings.signature_secret, str(issued_at), raw_body)
    if not hmac.compare_digest(signature, expected):
        raise AuthenticationError(
            "Invalid Signature", code="invalid_signature", param="$.headers.Signature"
        )


def _apply_common_response_headers(
    response: Response, idempotency_key: Optional[str], request_id: Optional[str]
) -> None:
    if idempotency_key:
        response.headers["Idempotency-Key"] = idempotency_key
    if request_id:
        response.headers["Request-Id"] = request_id


def _error_response(request: Request, error: ACPSellerError) -> JSONResponse:
    response = JSONResponse(status_code=error.status_code, content=error.to_body())
    _apply_common_response_headers(
        response,
        request.headers.get("Idempotency-Key"),
        request.headers.get("Request-Id"),
    )
    return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ACPSellerError)
    async def acp_error_handler(request: Request, exc: ACPSellerError) -> JSONResponse:
        log = logger.error if exc.retryable else logger.warning
        log(
            "%s %s failed: %s %s (%s)",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code,
            exc,
        )
        return _error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = exc.errors()[0]
        loc = list(error.get("loc", ()))
        source = loc.pop(0) if loc else "body"
        if source == "header":
            param = f"$.headers.{loc[0]}" if loc else "$.headers"
        elif error.get("type") == "json_invalid":
            param = "$"
        else:
            param = json_path("$", loc)
        code = "missing" if error.get("type") == "missing" else "invalid"
        logger.warning("%s %s rejected: %s at %s", request.method, request.url.path, error.get("msg"), param)
        return _error_response(request, ValidationError(str(error.get("msg")), code=code, param=param))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(request, ProcessingError("Internal server error"))


def create_seller_router(
    lifecycle: CheckoutLifecycle,
    settings: Settings,
    prefix: str = "",
    require_auth: bool = True,
) -> APIRouter:
    """
    Create a FastAPI APIRouter with all 5 ACP checkout endpoints wired
    to the given lifecycle.
    """
    router = APIRouter(prefix=prefix, tags=["ACP Checkout"])

    async def acp_request(
        request: Request,
        authorization: Optional[str] = Header(None),
        api_version: Optional[str] = Header(None, alias="API-Version"),
        idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
        request_id: Optional[str] = Header(None, alias="Request-Id"),
        signature: Optional[str] = Header(None, alias="Signature"),
        timestamp: Optional[str] = Header(None, alias="Timestamp"),
    ) -> RequestContext:
        _validate_api_version(api_version, settings.supported_api_versions)
        if require_auth:
            _validate_bearer_token(authorization, settings.api_keys)
        raw_body = await request.body()
        _verify_signature(raw_body, signature, timestamp, settings)
        return RequestContext(idempotency_key=idempotency_key, request_id=request_id)

    def respond(result: LifecycleResponse, ctx: RequestContext) -> JSONResponse:
        response = JSONResponse(status_code=result.status_code, content=result.body)
        _apply_common_response_headers(response, ctx.idempotency_key, ctx.request_id)
        return response

    @router.post("/checkout_sessions", status_code=201, response_model=CheckoutSession)
    async def create_checkout_session(
        body: CheckoutSessionCreateRequest,
        ctx: RequestContext = Depends(acp_request),
    ):
        return respond(await lifecycle.create(body, ctx.idempotency_key), ctx)

    @router.get("/checkout_sessions/{session_id}", response_model=CheckoutSession)
    async def get_checkout_session(
        session_id: str,
        ctx: RequestContext = Depends(acp_request),
    ):
        return respond(await lifecycle.retrieve(session_id), ctx)

    @router.post("/checkout_sessions/{session_id}", response_model=CheckoutSession)
    async def update_checkout_session(
        session_id: str,
        body: CheckoutSessionUpdateRequest,
        ctx: RequestContext = Depends(acp_request),
    ):
        return respond(await lifecycle.update(session_id, body, ctx.idempotency_key), ctx)

    @router.post("/checkout_sessions/{session_id}/complete", response_model=CheckoutSession)
    async def complete_checkout_session(
        session_id: str,
        body: CheckoutSessionCompleteRequest,
        ctx: RequestContext = Depends(acp_request),
    ):
        return respond(await lifecycle.complete(session_id, body, ctx.idempotency_key), ctx)

    @router.post("/checkout_sessions/{session_id}/cancel", response_model=CheckoutSession)
    async def cancel_checkout_session(
        session_id: str,
        body: Optional[CheckoutSessionCancelRequest] = None,
        ctx: RequestContext = Depends(acp_request),
    ):
        return respond(await lifecycle.cancel(session_id, body, ctx.idempotency_key), ctx)

    return router
