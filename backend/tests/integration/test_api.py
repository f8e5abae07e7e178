# backend/tests/integration/test_api.py
import json
from unittest.mock import AsyncMock

from flowgate.config.settings import settings
from flowgate.models.context import ChannelConfig
from flowgate.services.db_service import db_service
from flowgate.utils.dependencies import get_channel_config

API_PREFIX = f"/api/{settings.api_version}/webhooks"


def _post_flow(client, body: bytes, signature: str):
    headers = {"X-Hub-Signature-256": signature, "Content-Type": "application/json"}
    return client.post(f"{API_PREFIX}/flow-endpoint", content=body, headers=headers)


def _encrypted_body(flow_client, payload):
    envelope, aes_key, iv = flow_client.encrypt_request(payload)
    return json.dumps(envelope).encode("utf-8"), aes_key, iv


def test_ping_round_trip(test_client, flow_client, sign_body):
    body, aes_key, iv = _encrypted_body(flow_client, {"version": "3.0", "action": "ping"})

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 200
    assert flow_client.decrypt_response(response.text, aes_key, iv) == {"data": {"status": "active"}}


def test_init_response_is_encrypted_screen(test_client, flow_client, sign_body, mocker):
    mock_handle = mocker.patch(
        "flowgate.routes.flow_endpoint.flow_exchange.handle",
        new_callable=AsyncMock,
        return_value={"screen": "WELCOME", "data": {}},
    )
    token = "11111111-1111-1111-1111-111111111111-nodeA"
    body, aes_key, iv = _encrypted_body(
        flow_client, {"version": "3.0", "action": "INIT", "flow_token": token, "data": {}}
    )

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 200
    assert flow_client.decrypt_response(response.text, aes_key, iv) == {"screen": "WELCOME", "data": {}}
    exchange = mock_handle.await_args.args[0]
    assert exchange.action == "INIT"
    assert exchange.flow_token == token


def test_invalid_signature_is_rejected(test_client, flow_client, mocker):
    mock_handle = mocker.patch("flowgate.routes.flow_endpoint.flow_exchange.handle", new_callable=AsyncMock)
    body, _, _ = _encrypted_body(flow_client, {"version": "3.0", "action": "ping"})

    response = _post_flow(test_client, body, "sha256=invalid")

    assert response.status_code == 401
    mock_handle.assert_not_awaited()


def test_signature_over_different_body_is_rejected(test_client, flow_client, sign_body):
    body, _, _ = _encrypted_body(flow_client, {"version": "3.0", "action": "ping"})
    tampered = body.replace(b'"initial_vector"', b'"initial_vector" ')

    response = _post_flow(test_client, tampered, sign_body(body))

    assert response.status_code == 401


def test_undecryptable_payload_returns_421(test_client, sign_body):
    envelope = {
        "encrypted_flow_data": "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
        "encrypted_aes_key": "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA",
        "initial_vector": "AAAAAAAAAAAAAAAAAAAAAA==",
    }
    body = json.dumps(envelope).encode("utf-8")

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 421


def test_unknown_action_returns_422(test_client, flow_client, sign_body):
    body, _, _ = _encrypted_body(flow_client, {"version": "3.0", "action": "navigate"})

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 422


def test_malformed_envelope_returns_422(test_client, sign_body):
    body = json.dumps({"encrypted_flow_data": "abc"}).encode("utf-8")

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 422


def test_missing_private_key_returns_422(test_client, flow_client, sign_body):
    test_client.app.dependency_overrides[get_channel_config] = lambda: ChannelConfig(
        version=2, app_secret=settings.whatsapp_app_secret
    )
    body, _, _ = _encrypted_body(flow_client, {"version": "3.0", "action": "ping"})

    response = _post_flow(test_client, body, sign_body(body))

    assert response.status_code == 422


def test_missing_app_secret_returns_422(test_client, flow_client, rsa_key_pair):
    test_client.app.dependency_overrides[get_channel_config] = lambda: ChannelConfig(
        version=2, private_key_pem=rsa_key_pair[1]
    )
    body, _, _ = _encrypted_body(flow_client, {"version": "3.0", "action": "ping"})

    response = _post_flow(test_client, body, "sha256=whatever")

    assert response.status_code == 422


def test_health_check(test_client):
    response = test_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_reports_database_outage(test_client, mocker):
    mocker.patch.object(db_service, "health_check", new_callable=AsyncMock, return_value=False)

    response = test_client.get("/health/ready")

    assert response.status_code == 503
