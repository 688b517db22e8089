"""
ACP Checkout Client: an async httpx client for agents calling a merchant.

Usage:
    async with ACPCheckoutClient("https://merchant.example.com", auth_token="...") as acp:
        session = await acp.create_session(CheckoutSessionCreateRequest(items=[...]))
        session = await acp.complete_session(session.id, CheckoutSessionCompleteRequest(...))
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from acp_checkout.errors import ACPSellerError, ProcessingError
from acp_checkout.models import (
    CheckoutSession,
    CheckoutSessionCancelRequest,
    CheckoutSessionCompleteRequest,
    CheckoutSessionCreateRequest,
    CheckoutSessionUpdateRequest,
)
from acp_checkout.seller import sign_payload


DEFAULT_API_VERSION = "2026-01-16"


class ACPCheckoutClient:
    def __init__(
        self,
        base_url: str,
        auth_token: str = "demo-token",
        *,
        api_version: str = DEFAULT_API_VERSION,
        signature_secret: str = "",
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_version = api_version
        self.signature_secret = signature_secret
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {auth_token}"},
        )

    async def __aenter__(self) -> ACPCheckoutClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_session(
        self,
        request: CheckoutSessionCreateRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        return await self._send("POST", "/checkout_sessions", request, idempotency_key or _new_key())

    async def get_session(self, session_id: str) -> CheckoutSession:
        return await self._send("GET", f"/checkout_sessions/{session_id}")

    async def update_session(
        self,
        session_id: str,
        request: CheckoutSessionUpdateRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        return await self._send(
            "POST", f"/checkout_sessions/{session_id}", request, idempotency_key or _new_key()
        )

    async def complete_session(
        self,
        session_id: str,
        request: CheckoutSessionCompleteRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        return await self._send(
            "POST",
            f"/checkout_sessions/{session_id}/complete",
            request,
            idempotency_key or _new_key(),
        )

    async def cancel_session(
        self,
        session_id: str,
        request: Optional[CheckoutSessionCancelRequest] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        return await self._send(
            "POST",
            f"/checkout_sessions/{session_id}/cancel",
            request or CheckoutSessionCancelRequest(),
            idempotency_key or _new_key(),
        )

    async def _send(
        self,
        method: str,
        path: str,
        body: Optional[BaseModel] = None,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSession:
        headers = {"API-Version": self.api_version, "Request-Id": f"req_{uuid.uuid4().hex[:16]}"}
        content = b""
        if body is not None:
            content = json.dumps(
                body.model_dump(mode="json", exclude_unset=True), separators=(",", ":")
            ).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        if self.signature_secret:
            timestamp = str(int(time.time()))
            headers["Timestamp"] = timestamp
            headers["Signature"] = sign_payload(self.signature_secret, timestamp, content)

        resp = await self._client.request(method, path, content=content or None, headers=headers)
        data = _json_or_none(resp)
        if resp.is_error:
            if isinstance(data, dict) and "code" in data:
                raise ACPSellerError.from_body(resp.status_code, data)
            raise ACPSellerError(
                resp.status_code,
                "processing_error",
                "processing_error",
                f"Unexpected {resp.status_code} response from merchant",
            )
        try:
            return CheckoutSession.model_validate(data)
        except ValidationError as exc:
            raise ProcessingError(f"Invalid checkout session from merchant: {exc}") from exc


def _new_key() -> str:
    return f"idem_{uuid.uuid4().hex}"


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None
