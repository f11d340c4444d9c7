"""Integration tests for API endpoints"""

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from debt_gateway.domain.exceptions import LedgerOracleError
from debt_gateway.domain.models import SignedPrice


def price_body(price: SignedPrice) -> dict:
    signature = price.provider_signature
    return {
        "token_address": price.token_address.value,
        "token_price": str(price.token_price),
        "timestamp": price.timestamp,
        "signature": {"v": signature.v, "r": signature.r, "s": signature.s},
    }


@pytest.fixture
def loan_request(debtor) -> dict:
    return {
        "principal_amount": "100",
        "principal_token": "REP",
        "collateral_amount": "200",
        "collateral_token": "WETH",
        "interest_rate": "12.5",
        "term_length": 6,
        "amortization_unit": "months",
        "expires_in": 24,
        "debtor": debtor.value,
    }


@pytest.fixture
def offer_request(price_provider) -> dict:
    return {
        "principal_amount": "100",
        "principal_token": "REP",
        "collateral_token": "WETH",
        "interest_rate": "10",
        "term_length": 30,
        "amortization_unit": "days",
        "expires_in": 24,
        "ltv": "60",
        "price_provider": price_provider.value,
    }


@pytest.fixture
def prices(registry, sign_price) -> dict:
    return {
        "principal_price": price_body(sign_price(registry.get_token("REP"), "1")),
        "collateral_price": price_body(sign_price(registry.get_token("WETH"), "1")),
    }


def signing_hash(client: TestClient, order_id: str, role: str, address: str) -> bytes:
    response = client.get(f"/v1/orders/{order_id}/signing-hash", params={"role": role, "address": address})
    assert response.status_code == 200
    return bytes.fromhex(response.json()["signing_hash"][2:])


@pytest.fixture
def debtor_signed_order(client, loan_request, debtor, debtor_account, wallet_sign) -> str:
    order_id = client.post("/v1/orders", json=loan_request).json()["order_id"]
    payload = signing_hash(client, order_id, "debtor", debtor.value)
    response = client.post(
        f"/v1/orders/{order_id}/signatures",
        json={"role": "debtor", "signer": debtor.value, "signature": wallet_sign(debtor_account, payload)},
    )
    assert response.status_code == 200
    return order_id


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "decision_engine" in response.json()
    assert response.headers["X-Request-ID"]


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "debt_orders_created_total" in response.text


def test_request_id_is_propagated(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_order(client: TestClient, loan_request, oracle):
    """Test POST /v1/orders returns the interchange document and hashes"""
    response = client.post("/v1/orders", json=loan_request)

    assert response.status_code == 201
    data = response.json()
    assert data["kind"] == "debt_order"
    assert data["status"] == "draft"
    assert data["commitment_hash"].startswith("0x")
    assert data["debt_order_hash"].startswith("0x")
    assert data["order"]["principalAmount"] == str(100 * 10**18)
    assert data["order"]["expiresAt"] == oracle.current_time + 24 * 3600


def test_create_order_unknown_token(client: TestClient, loan_request):
    response = client.post("/v1/orders", json={**loan_request, "principal_token": "DOGE"})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "UNKNOWN_TOKEN"


def test_create_order_bad_unit(client: TestClient, loan_request):
    response = client.post("/v1/orders", json={**loan_request, "amortization_unit": "fortnights"})

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INVALID_DURATION"


def test_get_order_not_found(client: TestClient):
    fake_uuid = "00000000-0000-0000-0000-000000000000"
    response = client.get(f"/v1/orders/{fake_uuid}")
    assert response.status_code == 404


def test_debtor_signature_opens_order(client: TestClient, debtor_signed_order):
    response = client.get(f"/v1/orders/{debtor_signed_order}/status")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "open"
    assert data["order"]["debtorSignature"] is not None


def test_resubmitted_signature_is_idempotent(client, loan_request, debtor, debtor_account, wallet_sign):
    order_id = client.post("/v1/orders", json=loan_request).json()["order_id"]
    payload = signing_hash(client, order_id, "debtor", debtor.value)
    body = {"role": "debtor", "signer": debtor.value, "signature": wallet_sign(debtor_account, payload)}

    first = client.post(f"/v1/orders/{order_id}/signatures", json=body)
    second = client.post(f"/v1/orders/{order_id}/signatures", json=body)

    assert first.json()["outcome"] == "attached"
    assert second.status_code == 200
    assert second.json()["outcome"] == "already_signed"


def test_signature_from_wrong_key_is_rejected(client, loan_request, debtor, creditor_account, wallet_sign):
    order_id = client.post("/v1/orders", json=loan_request).json()["order_id"]
    payload = signing_hash(client, order_id, "debtor", debtor.value)

    response = client.post(
        f"/v1/orders/{order_id}/signatures",
        json={"role": "debtor", "signer": debtor.value, "signature": wallet_sign(creditor_account, payload)},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"
    assert client.get(f"/v1/orders/{order_id}").json()["order"]["debtorSignature"] is None


def test_fill_order(client: TestClient, debtor_signed_order, creditor, creditor_account, wallet_sign, oracle):
    """Test POST /v1/orders/{order_id}/fill with the creditor's countersignature"""
    payload = signing_hash(client, debtor_signed_order, "creditor", creditor.value)

    response = client.post(
        f"/v1/orders/{debtor_signed_order}/fill",
        json={"signature": wallet_sign(creditor_account, payload), "creditor": creditor.value},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "filled"
    assert data["transaction_hash"] == "0xfill1"
    assert oracle.submissions[0][2] == creditor

    again = client.post(
        f"/v1/orders/{debtor_signed_order}/fill",
        json={"signature": wallet_sign(creditor_account, payload), "creditor": creditor.value},
    )
    assert again.status_code == 409
    assert again.json()["detail"]["code"] == "ORDER_FINALIZED"


def creditor_outcomes(outcome: str) -> float:
    value = REGISTRY.get_sample_value("debt_order_signatures_total", {"role": "creditor", "outcome": outcome})
    return value or 0.0


def test_fill_after_creditor_presigned_counts_as_already_signed(
    client: TestClient, debtor_signed_order, creditor, creditor_account, wallet_sign
):
    payload = signing_hash(client, debtor_signed_order, "creditor", creditor.value)
    signature = wallet_sign(creditor_account, payload)
    client.post(
        f"/v1/orders/{debtor_signed_order}/signatures",
        json={"role": "creditor", "signer": creditor.value, "signature": signature},
    )
    attached, already_signed = creditor_outcomes("attached"), creditor_outcomes("already_signed")

    response = client.post(
        f"/v1/orders/{debtor_signed_order}/fill", json={"signature": signature, "creditor": creditor.value}
    )

    assert response.status_code == 200
    assert creditor_outcomes("already_signed") == already_signed + 1
    assert creditor_outcomes("attached") == attached


def test_fill_unsigned_order_conflicts(client, loan_request, creditor, creditor_account, wallet_sign, oracle):
    order_id = client.post("/v1/orders", json=loan_request).json()["order_id"]
    payload = signing_hash(client, order_id, "creditor", creditor.value)

    response = client.post(
        f"/v1/orders/{order_id}/fill",
        json={"signature": wallet_sign(creditor_account, payload), "creditor": creditor.value},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "ORDER_NOT_FILLABLE"
    assert oracle.submissions == []


def test_cancel_is_idempotent(client: TestClient, debtor_signed_order, debtor, oracle):
    first = client.post(f"/v1/orders/{debtor_signed_order}/cancel", json={"address": debtor.value})
    second = client.post(f"/v1/orders/{debtor_signed_order}/cancel", json={"address": debtor.value})

    assert first.status_code == 200
    assert first.json()["transaction_hash"] == "0xcancel1"
    assert second.status_code == 200
    assert second.json()["transaction_hash"] is None
    assert second.json()["status"] == "cancelled"
    assert len(oracle.submissions) == 1


def test_cancel_by_other_party_conflicts(client: TestClient, debtor_signed_order, creditor):
    response = client.post(f"/v1/orders/{debtor_signed_order}/cancel", json={"address": creditor.value})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "SIGNER_MISMATCH"


def test_expired_order_status(client: TestClient, debtor_signed_order, oracle):
    oracle.current_time += 48 * 3600

    response = client.get(f"/v1/orders/{debtor_signed_order}/status")

    assert response.json()["status"] == "expired"


def test_ledger_outage_is_503(client: TestClient, debtor_signed_order, oracle, monkeypatch):
    async def unavailable():
        raise LedgerOracleError("Ledger current_time unreachable")

    monkeypatch.setattr(oracle, "get_current_time", unavailable)

    response = client.get(f"/v1/orders/{debtor_signed_order}/status")

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "LEDGER_UNAVAILABLE"


def test_list_orders_by_debtor(client: TestClient, loan_request, debtor, creditor):
    client.post("/v1/orders", json=loan_request)
    client.post("/v1/orders", json=loan_request)

    response = client.get("/v1/orders", params={"debtor": debtor.value.lower()})

    assert response.status_code == 200
    data = response.json()
    assert data["debtor"] == debtor.value
    assert len(data["orders"]) == 2

    other = client.get("/v1/orders", params={"debtor": creditor.value})
    assert other.json()["orders"] == []


def test_list_orders_rejects_bad_address(client: TestClient):
    response = client.get("/v1/orders", params={"debtor": "0x123"})
    assert response.status_code == 422


def test_offer_flow(
    client, offer_request, prices, creditor, creditor_account, debtor, debtor_account, wallet_sign, oracle
):
    """Creditor signs the offer, debtor picks collateral, commits and accepts"""
    created = client.post("/v1/offers", json=offer_request)
    assert created.status_code == 201
    order_id = created.json()["order_id"]
    assert created.json()["kind"] == "max_ltv_offer"
    assert created.json()["debt_order_hash"] is None

    creditor_hash = signing_hash(client, order_id, "creditor", creditor.value)
    response = client.post(
        f"/v1/orders/{order_id}/signatures",
        json={"role": "creditor", "signer": creditor.value, "signature": wallet_sign(creditor_account, creditor_hash)},
    )
    assert response.status_code == 200

    response = client.post(f"/v1/offers/{order_id}/collateral", json={"amount": "200"})
    assert response.status_code == 200
    assert response.json()["order"]["collateralSet"] is True

    debtor_hash = signing_hash(client, order_id, "debtor", debtor.value)
    response = client.post(
        f"/v1/offers/{order_id}/debtor-signature",
        json={"signature": wallet_sign(debtor_account, debtor_hash), "debtor": debtor.value, **prices},
    )
    assert response.status_code == 200
    assert response.json()["signer"] == debtor.value

    # Prices are transient
    document = client.get(f"/v1/orders/{order_id}").json()["order"]
    assert "principalPrice" not in document

    accepted = client.post(f"/v1/offers/{order_id}/accept", json={"address": debtor.value})
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "filled"
    assert oracle.submissions[0][0] == "fill"


def test_resubmitted_offer_debtor_signature_conflicts(
    client, offer_request, prices, debtor, debtor_account, wallet_sign
):
    order_id = client.post("/v1/offers", json=offer_request).json()["order_id"]
    client.post(f"/v1/offers/{order_id}/collateral", json={"amount": "200"})
    payload = signing_hash(client, order_id, "debtor", debtor.value)
    body = {"signature": wallet_sign(debtor_account, payload), "debtor": debtor.value, **prices}

    first = client.post(f"/v1/offers/{order_id}/debtor-signature", json=body)
    second = client.post(f"/v1/offers/{order_id}/debtor-signature", json=body)

    assert first.status_code == 200
    assert second.status_code == 409
    assert second.json()["detail"]["code"] == "ALREADY_SIGNED_BY_DEBTOR"


def test_debtor_signature_without_collateral(client, offer_request, prices, debtor, debtor_account, wallet_sign):
    order_id = client.post("/v1/offers", json=offer_request).json()["order_id"]
    payload = signing_hash(client, order_id, "debtor", debtor.value)

    response = client.post(
        f"/v1/offers/{order_id}/debtor-signature",
        json={"signature": wallet_sign(debtor_account, payload), "debtor": debtor.value, **prices},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "COLLATERAL_AMOUNT_NOT_SET"
    assert client.get(f"/v1/orders/{order_id}").json()["order"]["debtorSignature"] is None


def test_debtor_signature_with_insufficient_collateral(
    client, offer_request, prices, debtor, debtor_account, wallet_sign
):
    order_id = client.post("/v1/offers", json=offer_request).json()["order_id"]
    client.post(f"/v1/offers/{order_id}/collateral", json={"amount": "100"})
    payload = signing_hash(client, order_id, "debtor", debtor.value)

    response = client.post(
        f"/v1/offers/{order_id}/debtor-signature",
        json={"signature": wallet_sign(debtor_account, payload), "debtor": debtor.value, **prices},
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["code"] == "INSUFFICIENT_COLLATERAL_AMOUNT"
    assert "100 WETH" in detail["message"]


def test_price_from_other_provider_is_rejected(
    client, offer_request, prices, debtor, debtor_account, wallet_sign, creditor
):
    order_id = client.post("/v1/offers", json={**offer_request, "price_provider": creditor.value}).json()["order_id"]
    client.post(f"/v1/offers/{order_id}/collateral", json={"amount": "200"})
    payload = signing_hash(client, order_id, "debtor", debtor.value)

    response = client.post(
        f"/v1/offers/{order_id}/debtor-signature",
        json={"signature": wallet_sign(debtor_account, payload), "debtor": debtor.value, **prices},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "PRICE_SIGNATURE_INVALID"


def test_collateral_on_plain_order_conflicts(client: TestClient, loan_request):
    order_id = client.post("/v1/orders", json=loan_request).json()["order_id"]

    response = client.post(f"/v1/offers/{order_id}/collateral", json={"amount": "5"})

    assert response.status_code == 409


def test_ltv_check_sufficient(client: TestClient, prices):
    """100 REP against 200 WETH at equal prices with a 60% max LTV"""
    response = client.post(
        "/v1/ltv/check",
        json={
            "principal_amount": "100",
            "principal_token": "REP",
            "collateral_amount": "200",
            "collateral_token": "WETH",
            "max_ltv": "60",
            **prices,
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["sufficient"] is True
    assert float(data["ratio"]) == 0.5
    assert data["required_collateral"] is not None


def test_ltv_check_insufficient(client: TestClient, prices):
    response = client.post(
        "/v1/ltv/check",
        json={
            "principal_amount": "100",
            "principal_token": "REP",
            "collateral_amount": "100",
            "collateral_token": "WETH",
            "max_ltv": "60",
            **prices,
        },
    )

    assert response.status_code == 200
    assert response.json()["sufficient"] is False


def test_ltv_check_without_prices(client: TestClient):
    response = client.post(
        "/v1/ltv/check",
        json={
            "principal_amount": "100",
            "principal_token": "REP",
            "collateral_amount": "200",
            "collateral_token": "WETH",
            "max_ltv": "60",
        },
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "PRICES_NOT_SET"
