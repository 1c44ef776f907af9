from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import API, auth_headers, create_milestone, create_project
from buildtrack.models.entities import Payment, PaymentDistribution, PaymentType


def _milestone(client: TestClient, headers: dict[str, str], milestone_id: str) -> dict[str, object]:
    response = client.get(f"{API}/milestones/{milestone_id}", headers=headers)
    assert response.status_code == 200
    return response.json()


def _pay(client: TestClient, headers: dict[str, str], milestone_id: str, amount: str):
    return client.post(
        f"{API}/payments",
        headers=headers,
        json={"milestone_id": milestone_id, "amount": amount, "payment_method": "cash"},
    )


def _taxed_milestone(client: TestClient, headers: dict[str, str]) -> tuple[str, str]:
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id, budget="1000.00", has_tax=True, tax_rate="21")
    return project_id, milestone_id


def test_single_payment_updates_milestone(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)

    response = _pay(client, headers, milestone_id, "500.00")

    assert response.status_code == 201
    body = response.json()
    assert body["payment"]["type"] == "single"
    assert body["payment"]["amount"] == "500.00"
    assert body["payment"]["created_by"] == "user-1"
    milestone = body["milestones"][0]
    assert milestone["paid_amount"] == "500.00"
    assert milestone["remaining_with_tax"] == "710.00"
    assert milestone["payment_percentage"] == "41.32"
    assert milestone["status"] == "partially_paid"


def test_overpayment_is_rejected_and_milestone_unchanged(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)
    assert _pay(client, headers, milestone_id, "500.00").status_code == 201

    response = _pay(client, headers, milestone_id, "800.00")

    assert response.status_code == 400
    body = response.json()
    assert body["milestone_id"] == milestone_id
    assert body["requested_amount"] == "800.00"
    assert body["max_allowed_amount"] == "710.00"
    assert _milestone(client, headers, milestone_id)["paid_amount"] == "500.00"


def test_payment_of_exact_remaining_marks_milestone_paid(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)

    response = _pay(client, headers, milestone_id, "1210.00")

    assert response.status_code == 201
    milestone = response.json()["milestones"][0]
    assert milestone["status"] == "paid"
    assert milestone["remaining_with_tax"] == "0.00"
    assert _pay(client, headers, milestone_id, "0.01").status_code == 400


def test_invalid_amounts_are_rejected(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)

    assert _pay(client, headers, milestone_id, "0").status_code == 422
    assert _pay(client, headers, milestone_id, "-5.00").status_code == 422
    assert _pay(client, headers, milestone_id, "10.001").status_code == 422
    assert _milestone(client, headers, milestone_id)["paid_amount"] == "0.00"


def test_unknown_milestone_is_not_found(client: TestClient) -> None:
    response = _pay(client, auth_headers(), "00000000-0000-0000-0000-000000000001", "10.00")

    assert response.status_code == 404


def test_distributed_payment_is_all_or_nothing(client: TestClient, db_session: Session) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")

    response = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "150.00"},
                {"milestone_id": second, "amount": "150.00"},
            ]
        },
    )

    assert response.status_code == 400
    assert response.json()["milestone_id"] == second
    assert response.json()["max_allowed_amount"] == "100.00"
    assert _milestone(client, headers, first)["paid_amount"] == "0.00"
    assert _milestone(client, headers, second)["paid_amount"] == "0.00"
    assert db_session.scalars(select(Payment)).all() == []


def test_distributed_payment_applies_each_share(client: TestClient, db_session: Session) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")

    response = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "total_amount": "250.00",
            "distributions": [
                {"milestone_id": first, "amount": "150.00"},
                {"milestone_id": second, "amount": "100.00"},
            ],
        },
    )

    assert response.status_code == 201
    payment = response.json()["payment"]
    assert payment["type"] == "distributed"
    assert payment["milestone_id"] is None
    assert payment["amount"] == "250.00"
    assert [row["sequence_no"] for row in payment["distributions"]] == [1, 2]
    assert _milestone(client, headers, first)["paid_amount"] == "150.00"
    assert _milestone(client, headers, second)["status"] == "paid"
    assert len(db_session.scalars(select(PaymentDistribution)).all()) == 2


def test_distributed_payment_validation(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    other_project_id = create_project(client, headers, name="Garage")
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    foreign = create_milestone(client, headers, other_project_id, name="X", budget="200.00")

    empty = client.post(f"{API}/payments/distributed", headers=headers, json={"distributions": []})
    duplicate = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "10.00"},
                {"milestone_id": first, "amount": "10.00"},
            ]
        },
    )
    mismatch = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={"total_amount": "30.00", "distributions": [{"milestone_id": first, "amount": "10.00"}]},
    )
    cross_project = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "10.00"},
                {"milestone_id": foreign, "amount": "10.00"},
            ]
        },
    )

    assert empty.status_code == 422
    assert duplicate.status_code == 422
    assert mismatch.status_code == 422
    assert cross_project.status_code == 422
    assert _milestone(client, headers, first)["paid_amount"] == "0.00"


def test_edit_single_payment_releases_old_amount(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)
    payment_id = _pay(client, headers, milestone_id, "1000.00").json()["payment"]["id"]

    same = client.patch(f"{API}/payments/{payment_id}", headers=headers, json={"amount": "1000.00"})
    up = client.patch(f"{API}/payments/{payment_id}", headers=headers, json={"amount": "1210.00"})
    too_much = client.patch(f"{API}/payments/{payment_id}", headers=headers, json={"amount": "1210.01"})
    down = client.patch(f"{API}/payments/{payment_id}", headers=headers, json={"amount": "300.00"})

    assert same.status_code == 200
    assert up.status_code == 200
    assert up.json()["milestones"][0]["status"] == "paid"
    assert too_much.status_code == 400
    assert too_much.json()["max_allowed_amount"] == "1210.00"
    assert down.status_code == 200
    assert down.json()["payment"]["amount"] == "300.00"
    assert _milestone(client, headers, milestone_id)["paid_amount"] == "300.00"


def test_edit_distributed_payment_moves_shares(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")
    third = create_milestone(client, headers, project_id, name="M3", budget="100.00")
    payment_id = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "100.00"},
                {"milestone_id": second, "amount": "50.00"},
            ]
        },
    ).json()["payment"]["id"]

    response = client.patch(
        f"{API}/payments/{payment_id}",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "200.00"},
                {"milestone_id": third, "amount": "25.00"},
            ]
        },
    )

    assert response.status_code == 200
    assert response.json()["payment"]["amount"] == "225.00"
    assert _milestone(client, headers, first)["paid_amount"] == "200.00"
    assert _milestone(client, headers, second)["paid_amount"] == "0.00"
    assert _milestone(client, headers, third)["paid_amount"] == "25.00"


def test_delete_payment_reverses_amounts(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)
    payment_id = _pay(client, headers, milestone_id, "400.00").json()["payment"]["id"]

    response = client.delete(f"{API}/payments/{payment_id}", headers=headers)

    assert response.status_code == 200
    assert response.json()["payment"] is None
    assert response.json()["milestones"][0]["paid_amount"] == "0.00"
    assert client.get(f"{API}/payments/{payment_id}", headers=headers).status_code == 404


def test_scoped_delete_removes_one_distribution_entry(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")
    payment_id = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "100.00"},
                {"milestone_id": second, "amount": "50.00"},
            ]
        },
    ).json()["payment"]["id"]

    partial = client.delete(f"{API}/payments/{payment_id}", headers=headers, params={"milestone_id": second})

    assert partial.status_code == 200
    remaining = partial.json()["payment"]
    assert remaining["amount"] == "100.00"
    assert [row["milestone_id"] for row in remaining["distributions"]] == [first]
    assert _milestone(client, headers, first)["paid_amount"] == "100.00"
    assert _milestone(client, headers, second)["paid_amount"] == "0.00"

    last = client.delete(f"{API}/payments/{payment_id}", headers=headers, params={"milestone_id": first})

    assert last.status_code == 200
    assert last.json()["payment"] is None
    assert _milestone(client, headers, first)["paid_amount"] == "0.00"


def test_payment_listings(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")
    _pay(client, headers, first, "20.00")
    client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "30.00"},
                {"milestone_id": second, "amount": "40.00"},
            ]
        },
    )

    milestone_rows = client.get(f"{API}/milestones/{first}/payments", headers=headers).json()["items"]
    project_rows = client.get(f"{API}/projects/{project_id}/payments", headers=headers).json()["items"]
    all_rows = client.get(f"{API}/payments", headers=headers).json()["items"]

    assert sorted(row["applied_amount"] for row in milestone_rows) == ["20.00", "30.00"]
    assert len(project_rows) == 2
    assert len(all_rows) == 2


def test_milestone_cannot_drop_below_paid_amount(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)
    _pay(client, headers, milestone_id, "1100.00")

    lowered = client.patch(f"{API}/milestones/{milestone_id}", headers=headers, json={"has_tax": False})
    raised = client.patch(f"{API}/milestones/{milestone_id}", headers=headers, json={"budget": "2000.00"})

    assert lowered.status_code == 422
    assert raised.status_code == 200
    assert raised.json()["total_with_tax"] == "2420.00"
    assert raised.json()["status"] == "partially_paid"


def test_milestone_delete_shrinks_distributed_payments(client: TestClient, db_session: Session) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    first = create_milestone(client, headers, project_id, name="M1", budget="200.00")
    second = create_milestone(client, headers, project_id, name="M2", budget="100.00")
    _pay(client, headers, second, "10.00")
    payment_id = client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "distributions": [
                {"milestone_id": first, "amount": "100.00"},
                {"milestone_id": second, "amount": "50.00"},
            ]
        },
    ).json()["payment"]["id"]

    response = client.delete(f"{API}/milestones/{second}", headers=headers)

    assert response.status_code == 204
    payment = client.get(f"{API}/payments/{payment_id}", headers=headers).json()
    assert payment["amount"] == "100.00"
    assert len(payment["distributions"]) == 1
    assert db_session.scalar(select(Payment).where(Payment.type == PaymentType.SINGLE)) is None
    assert _milestone(client, headers, first)["paid_amount"] == "100.00"


def test_payments_are_scoped_to_owner(client: TestClient) -> None:
    owner = auth_headers()
    stranger = auth_headers(user_id="user-2", email="other@test.local", display_name="Other")
    _, milestone_id = _taxed_milestone(client, owner)

    assert _pay(client, stranger, milestone_id, "10.00").status_code == 404
    payment_id = _pay(client, owner, milestone_id, "10.00").json()["payment"]["id"]
    assert client.get(f"{API}/payments/{payment_id}", headers=stranger).status_code == 404
    assert client.delete(f"{API}/payments/{payment_id}", headers=stranger).status_code == 404
    assert Decimal(_milestone(client, owner, milestone_id)["paid_amount"]) == Decimal("10.00")


def test_payment_amount_must_fit_storage_precision(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id, budget="999999999999.99")

    assert _pay(client, headers, milestone_id, "1000000000000").status_code == 422
    assert _pay(client, headers, milestone_id, "999999999999.99").status_code == 201


def test_payment_description_is_trimmed(client: TestClient) -> None:
    headers = auth_headers()
    _, milestone_id = _taxed_milestone(client, headers)

    response = client.post(
        f"{API}/payments",
        headers=headers,
        json={"milestone_id": milestone_id, "amount": "10.00", "description": "  Invoice 12  "},
    )
    blank = client.post(
        f"{API}/payments",
        headers=headers,
        json={"milestone_id": milestone_id, "amount": "10.00", "description": "   "},
    )

    assert response.json()["payment"]["description"] == "Invoice 12"
    assert blank.json()["payment"]["description"] is None
