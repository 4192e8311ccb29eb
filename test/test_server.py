"""Tests for the HTTP surface."""

import time

import pytest
from fastapi.testclient import TestClient

from upi_bridge.bridge import PaymentBridge
from upi_bridge.config import BridgeConfig, ChainConfig, MonitoringConfig, PayoutConfig
from upi_bridge.errors import RateUnavailable
from upi_bridge.server import create_app

from fakes import (
    INTENT_URI,
    PAYER_ADDRESS,
    RECIPIENT_ADDRESS,
    TOKEN_ADDRESS,
    FakeChain,
    make_payout_dispatcher,
    make_rate_oracle,
)


@pytest.fixture
def chain():
    return FakeChain(head=100)


@pytest.fixture
def bridge(chain):
    config = BridgeConfig(
        chain=ChainConfig(
            rpc_url="http://localhost:8545",
            token_address=TOKEN_ADDRESS,
            recipient_address=RECIPIENT_ADDRESS,
        ),
        payout=PayoutConfig(bearer_token="test-token"),
        monitoring=MonitoringConfig(polling_interval=0.01, deposit_timeout=5.0, lookback_blocks=10),
    )
    return PaymentBridge(
        config,
        w3=chain,
        rate_oracle=make_rate_oracle(),
        payout_dispatcher=make_payout_dispatcher(),
    )


@pytest.fixture
def client(bridge):
    with TestClient(create_app(bridge)) as client:
        yield client


class TestProcessUpi:
    """Tests for POST /process-upi."""

    def test_accepted_with_quote(self, client):
        response = client.post(
            "/process-upi",
            json={"paymentIntentUri": INTENT_URI, "payerAddress": PAYER_ADDRESS},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "pending_deposit"
        assert body["tokenAmount"] == "12000000"
        assert body["recipientAddress"] == RECIPIENT_ADDRESS
        assert body["requestId"]
        assert body["expiresAt"]

    def test_legacy_field_names(self, client):
        response = client.post(
            "/process-upi",
            json={"upiIntent": INTENT_URI, "userEthAddress": PAYER_ADDRESS, "timeoutSeconds": 30},
        )

        assert response.status_code == 202

    def test_malformed_intent(self, client):
        response = client.post(
            "/process-upi",
            json={"paymentIntentUri": "upi://pay?pn=nobody", "payerAddress": PAYER_ADDRESS},
        )

        assert response.status_code == 400
        assert response.json()["kind"] == "malformed_payment_intent"

    def test_invalid_payer(self, client):
        response = client.post(
            "/process-upi",
            json={"paymentIntentUri": INTENT_URI, "payerAddress": "0xnope"},
        )

        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_address"

    def test_rate_unavailable(self, client, bridge):
        bridge.rate_oracle.get_token_per_fiat_rate.side_effect = RateUnavailable("feed down")

        response = client.post(
            "/process-upi",
            json={"paymentIntentUri": INTENT_URI, "payerAddress": PAYER_ADDRESS},
        )

        assert response.status_code == 503
        assert response.json() == {"kind": "rate_unavailable", "reason": "feed down"}

    def test_chain_head_unavailable(self, client, chain):
        chain.fail_block_number = 1

        response = client.post(
            "/process-upi",
            json={"paymentIntentUri": INTENT_URI, "payerAddress": PAYER_ADDRESS},
        )

        assert response.status_code == 503
        assert response.json()["kind"] == "scan_failed"

    def test_missing_fields(self, client):
        response = client.post("/process-upi", json={"paymentIntentUri": INTENT_URI})

        assert response.status_code == 422


class TestPayments:
    """Tests for GET /payments/{request_id}."""

    def test_deposit_to_completion(self, client, chain):
        request_id = client.post(
            "/process-upi",
            json={"paymentIntentUri": INTENT_URI, "payerAddress": PAYER_ADDRESS},
        ).json()["requestId"]
        chain.add_transfer(101, 0, PAYER_ADDRESS, RECIPIENT_ADDRESS, 12_000_000)
        chain.head = 101

        deadline = time.monotonic() + 3
        status = client.get(f"/payments/{request_id}").json()
        while status["state"] != "completed" and time.monotonic() < deadline:
            time.sleep(0.02)
            status = client.get(f"/payments/{request_id}").json()

        assert status["state"] == "completed"
        assert status["payout"]["provider_reference"] == "cf-ref-1"
        assert status["completion_uri"].startswith("upi://pay?")

    def test_unknown_request(self, client):
        assert client.get("/payments/does-not-exist").status_code == 404


class TestRedirectAndHealth:

    def test_upi_redirect(self, client):
        response = client.get("/upi-redir", params={"uri": INTENT_URI}, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == INTENT_URI

    def test_redirect_rejects_other_schemes(self, client):
        response = client.get(
            "/upi-redir", params={"uri": "https://evil.example"}, follow_redirects=False
        )

        assert response.status_code == 400

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["tracked_requests"] == 0
