import time

from acp_checkout.errors import ServiceUnavailableError
from acp_checkout.seller import sign_payload

from tests.conftest import AUTHENTICATED, BUYER, US_ADDRESS, acp_headers


READY_BODY = {
    "items": [{"id": "item_123", "quantity": 1}],
    "fulfillment_details": {"address": US_ADDRESS},
    "selected_fulfillment_options": [{"type": "shipping", "option_id": "ship_std"}],
}

PAYMENT = {"payment_data": {"token": "tok_visa", "provider": "stripe"}}


def _create(client, body=None, key="create-1"):
    return client.post("/checkout_sessions", json=body or READY_BODY, headers=acp_headers(key))


def test_create_returns_session_and_echoes_headers(client):
    resp = client.post(
        "/checkout_sessions",
        json={"items": [{"id": "item_123", "quantity": 1}]},
        headers=acp_headers("create-1", **{"Request-Id": "req_1"}),
    )

    assert resp.status_code == 201
    assert resp.headers["Idempotency-Key"] == "create-1"
    assert resp.headers["Request-Id"] == "req_1"
    data = resp.json()
    assert data["status"] == "not_ready_for_payment"
    line = data["line_items"][0]
    assert line["item"] == {"id": "item_123", "quantity": 1}
    assert (line["base_amount"], line["tax"], line["total"]) == (300, 30, 330)
    assert "authentication_metadata" not in data
    assert "order" not in data


def test_empty_string_is_kept_distinct_from_omitted(client):
    data = _create(client).json()
    address = data["fulfillment_details"]["address"]
    assert address["line_two"] == ""
    assert "phone_number" not in data["fulfillment_details"]


def test_create_requires_idempotency_key(client):
    resp = client.post("/checkout_sessions", json=READY_BODY, headers=acp_headers())
    assert resp.status_code == 400
    assert resp.json()["param"] == "$.headers.Idempotency-Key"


def test_idempotency_key_can_be_optional(make_client):
    with make_client(require_idempotency_key=False) as client:
        resp = client.post("/checkout_sessions", json=READY_BODY, headers=acp_headers())
    assert resp.status_code == 201


def test_replay_is_byte_identical(client):
    first = _create(client)
    second = _create(client)

    assert first.status_code == second.status_code == 201
    assert first.content == second.content


def test_key_reuse_with_different_body_conflicts(client):
    _create(client)
    resp = _create(client, {"items": [{"id": "item_789", "quantity": 1}]})

    assert resp.status_code == 409
    assert resp.json() == {
        "type": "request_not_idempotent",
        "code": "idempotency_conflict",
        "message": resp.json()["message"],
        "param": "$.headers.Idempotency-Key",
    }


def test_missing_bearer_token_is_rejected(client):
    headers = acp_headers("k")
    del headers["Authorization"]
    resp = client.post("/checkout_sessions", json=READY_BODY, headers=headers)
    assert resp.status_code == 401
    assert resp.json()["type"] == "invalid_request"


def test_configured_api_keys_are_enforced(make_client):
    with make_client(api_keys=frozenset({"secret-key"})) as client:
        rejected = _create(client)
        accepted = client.post(
            "/checkout_sessions",
            json=READY_BODY,
            headers=acp_headers("k", Authorization="Bearer secret-key"),
        )
    assert rejected.status_code == 401
    assert rejected.json()["code"] == "invalid_api_key"
    assert accepted.status_code == 201


def test_unsupported_api_version(client):
    resp = client.post(
        "/checkout_sessions",
        json=READY_BODY,
        headers=acp_headers("k", **{"API-Version": "2020-01-01"}),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "unsupported_api_version"


def test_signed_requests(make_client):
    raw = b'{"items":[{"id":"item_123","quantity":1}]}'
    with make_client(signature_secret="whsec_test") as client:
        now = str(int(time.time()))
        good = client.post(
            "/checkout_sessions",
            content=raw,
            headers=acp_headers(
                "signed-1", Signature=sign_payload("whsec_test", now, raw), Timestamp=now
            ),
        )
        tampered = client.post(
            "/checkout_sessions",
            content=raw,
            headers=acp_headers("signed-2", Signature="0" * 64, Timestamp=now),
        )
        stale_ts = str(int(time.time()) - 3600)
        stale = client.post(
            "/checkout_sessions",
            content=raw,
            headers=acp_headers(
                "signed-3", Signature=sign_payload("whsec_test", stale_ts, raw), Timestamp=stale_ts
            ),
        )

    assert good.status_code == 201
    assert tampered.status_code == 401
    assert tampered.json()["code"] == "invalid_signature"
    assert stale.status_code == 401
    assert stale.json()["code"] == "invalid_timestamp"


def test_request_validation_maps_to_json_path(client):
    resp = _create(client, {"items": [{"id": "item_123", "quantity": 0}]})
    assert resp.status_code == 400
    assert resp.json()["type"] == "invalid_request"
    assert resp.json()["param"] == "$.items[0].quantity"

    missing = client.post("/checkout_sessions", json={}, headers=acp_headers("k2"))
    assert missing.json()["code"] == "missing"
    assert missing.json()["param"] == "$.items"


def test_unknown_item_is_a_validation_error(client):
    resp = _create(client, {"items": [{"id": "ghost", "quantity": 1}]})
    assert resp.status_code == 400
    assert resp.json()["param"] == "$.items[0].id"


def test_get_unknown_session(client):
    resp = client.get("/checkout_sessions/cs_missing", headers=acp_headers())
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_retrieve_does_not_change_state(client):
    session = _create(client).json()
    first = client.get(f"/checkout_sessions/{session['id']}", headers=acp_headers())
    second = client.get(f"/checkout_sessions/{session['id']}", headers=acp_headers())
    assert first.json() == second.json() == session


def test_update_without_key_and_with_key(client):
    session = _create(client).json()

    resp = client.post(
        f"/checkout_sessions/{session['id']}",
        json={"buyer": BUYER},
        headers=acp_headers(),
    )
    assert resp.status_code == 200
    assert resp.json()["buyer"]["email"] == "ada@example.com"

    keyed = client.post(
        f"/checkout_sessions/{session['id']}",
        json={"selected_fulfillment_options": [{"option_id": "ship_exp"}]},
        headers=acp_headers("update-1"),
    )
    again = client.post(
        f"/checkout_sessions/{session['id']}",
        json={"selected_fulfillment_options": [{"option_id": "ship_exp"}]},
        headers=acp_headers("update-1"),
    )
    assert keyed.content == again.content


def test_terminal_session_rejects_mutations(client):
    session = _create(client).json()
    client.post(f"/checkout_sessions/{session['id']}/cancel", headers=acp_headers())

    update = client.post(
        f"/checkout_sessions/{session['id']}", json={"buyer": BUYER}, headers=acp_headers()
    )
    complete = client.post(
        f"/checkout_sessions/{session['id']}/complete", json=PAYMENT, headers=acp_headers("c-1")
    )
    cancel = client.post(f"/checkout_sessions/{session['id']}/cancel", headers=acp_headers())

    for resp in (update, complete, cancel):
        assert resp.status_code == 405
        assert resp.json()["type"] == "invalid_request"


def test_cancel_with_intent_trace_is_not_echoed(client):
    session = _create(client).json()

    resp = client.post(
        f"/checkout_sessions/{session['id']}/cancel",
        json={
            "intent_trace": {
                "reason_code": "shipping_cost",
                "trace_summary": "Shipping was more than the item",
                "metadata": {"target_shipping_cost": 0},
            }
        },
        headers=acp_headers(),
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "canceled"
    assert "intent_trace" not in data
    assert "shipping_cost" not in resp.text

    fetched = client.get(f"/checkout_sessions/{session['id']}", headers=acp_headers())
    assert fetched.status_code == 200
    assert "intent_trace" not in fetched.text
    assert "target_shipping_cost" not in fetched.text


def test_cancel_accepts_unknown_reason_code(client):
    session = _create(client).json()
    resp = client.post(
        f"/checkout_sessions/{session['id']}/cancel",
        json={"intent_trace": {"reason_code": "found_it_cheaper_in_store"}},
        headers=acp_headers(),
    )
    assert resp.status_code == 200


def test_double_complete_with_same_key_creates_one_order(client, payments):
    session = _create(client).json()
    url = f"/checkout_sessions/{session['id']}/complete"

    first = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))
    second = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))

    assert first.status_code == second.status_code == 200
    assert first.content == second.content
    assert first.json()["status"] == "completed"
    assert first.json()["order"]["checkout_session_id"] == session["id"]
    assert payments.authorization_count == 1


def test_complete_requires_idempotency_key(client):
    session = _create(client).json()
    resp = client.post(
        f"/checkout_sessions/{session['id']}/complete", json=PAYMENT, headers=acp_headers()
    )
    assert resp.status_code == 400
    assert resp.json()["param"] == "$.headers.Idempotency-Key"


def test_client_error_is_replayed(client):
    session = _create(client, {"items": [{"id": "item_123", "quantity": 1}]}).json()
    url = f"/checkout_sessions/{session['id']}/complete"

    first = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))
    assert first.status_code == 400
    assert first.json()["param"] == "$.status"

    client.post(
        f"/checkout_sessions/{session['id']}",
        json={
            "fulfillment_details": {"address": US_ADDRESS},
            "selected_fulfillment_options": [{"option_id": "ship_std"}],
        },
        headers=acp_headers(),
    )
    replayed = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))
    fresh = client.post(url, json=PAYMENT, headers=acp_headers("complete-2"))

    assert replayed.status_code == 400
    assert replayed.content == first.content
    assert fresh.status_code == 200


def test_server_error_is_not_replayed(client, payments, monkeypatch):
    session = _create(client).json()
    url = f"/checkout_sessions/{session['id']}/complete"
    authorize = payments.authorize
    calls = []

    async def flaky_authorize(**kwargs):
        calls.append(kwargs)
        if len(calls) == 1:
            raise ServiceUnavailableError("PSP is down")
        return await authorize(**kwargs)

    monkeypatch.setattr(payments, "authorize", flaky_authorize)

    first = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))
    assert first.status_code == 503
    assert first.json()["type"] == "service_unavailable"
    status = client.get(f"/checkout_sessions/{session['id']}", headers=acp_headers()).json()["status"]
    assert status == "ready_for_payment"

    retry = client.post(url, json=PAYMENT, headers=acp_headers("complete-1"))
    assert retry.status_code == 200
    assert retry.json()["status"] == "completed"


def test_unexpected_error_becomes_processing_error(client, payments, monkeypatch):
    session = _create(client).json()

    async def broken_authorize(**kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(payments, "authorize", broken_authorize)
    resp = client.post(
        f"/checkout_sessions/{session['id']}/complete", json=PAYMENT, headers=acp_headers("c-1")
    )

    assert resp.status_code == 500
    assert resp.json()["type"] == "processing_error"
    status = client.get(f"/checkout_sessions/{session['id']}", headers=acp_headers()).json()["status"]
    assert status == "ready_for_payment"


def test_three_ds_challenge_over_http(make_client):
    with make_client(three_ds_mode="always") as client:
        session = _create(client).json()
        url = f"/checkout_sessions/{session['id']}/complete"

        challenged = client.post(url, json=PAYMENT, headers=acp_headers("c-1"))
        assert challenged.status_code == 200
        assert challenged.json()["status"] == "authentication_required"
        metadata = challenged.json()["authentication_metadata"]
        assert metadata["amount"] == 330 + 799

        missing = client.post(url, json=PAYMENT, headers=acp_headers("c-2"))
        assert missing.status_code == 400
        assert missing.json() == {
            "type": "invalid_request",
            "code": "requires_3ds",
            "message": missing.json()["message"],
            "param": "$.authentication_result",
        }

        bad = client.post(
            url,
            json={**PAYMENT, "authentication_result": {"outcome": "authenticated"}},
            headers=acp_headers("c-3"),
        )
        assert bad.status_code == 400
        assert bad.json()["param"].startswith("$.authentication_result")

        completed = client.post(
            url,
            json={**PAYMENT, "authentication_result": AUTHENTICATED},
            headers=acp_headers("c-4"),
        )
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert "authentication_metadata" not in completed.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_challenged_session_completed_twice_with_same_key(make_client, payments):
    with make_client(three_ds_mode="always") as client:
        session = _create(client).json()
        url = f"/checkout_sessions/{session['id']}/complete"
        client.post(url, json=PAYMENT, headers=acp_headers("challenge"))

        body = {**PAYMENT, "authentication_result": AUTHENTICATED}
        first = client.post(url, json=body, headers=acp_headers("finish"))
        second = client.post(url, json=body, headers=acp_headers("finish"))

    assert first.status_code == second.status_code == 200
    assert first.content == second.content
    assert first.json()["order"]["id"]
    assert payments.authorization_count == 1
