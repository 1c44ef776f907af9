from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import API, auth_headers, create_milestone, create_project


def _add_tasks(client: TestClient, headers: dict[str, str], milestone_id: str, *, total: int, completed: int) -> None:
    for index in range(total):
        response = client.post(
            f"{API}/milestones/{milestone_id}/tasks",
            headers=headers,
            json={"name": f"Task {index}", "status": "completed" if index < completed else "pending"},
        )
        assert response.status_code == 201


def test_project_crud(client: TestClient) -> None:
    headers = auth_headers()

    created = client.post(
        f"{API}/projects",
        headers=headers,
        json={"name": " Kitchen ", "start_date": "2026-01-01", "end_date": "2026-06-30"},
    )
    assert created.status_code == 201
    project_id = created.json()["id"]
    assert created.json()["name"] == "Kitchen"
    assert created.json()["status"] == "active"

    updated = client.patch(f"{API}/projects/{project_id}", headers=headers, json={"status": "completed"})
    assert updated.status_code == 200
    assert updated.json()["status"] == "completed"

    invalid = client.patch(f"{API}/projects/{project_id}", headers=headers, json={"end_date": "2025-12-31"})
    assert invalid.status_code == 422

    listed = client.get(f"{API}/projects", headers=headers)
    assert [item["id"] for item in listed.json()["items"]] == [project_id]

    deleted = client.delete(f"{API}/projects/{project_id}", headers=headers)
    assert deleted.status_code == 204
    assert client.get(f"{API}/projects/{project_id}", headers=headers).status_code == 404


def test_milestone_defaults_to_settings_tax_rate(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id, budget="100.00", has_tax=True)

    body = client.get(f"{API}/milestones/{milestone_id}", headers=headers).json()

    assert body["configured_tax_rate"] is None
    assert body["tax_rate"] == "21.00"
    assert body["tax_amount"] == "21.00"
    assert body["total_with_tax"] == "121.00"


def test_milestone_tax_rate_can_be_reset(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id, budget="100.00", has_tax=True, tax_rate="10")

    untouched = client.patch(f"{API}/milestones/{milestone_id}", headers=headers, json={"name": "Walls"})
    reset = client.patch(f"{API}/milestones/{milestone_id}", headers=headers, json={"tax_rate": None})

    assert untouched.json()["tax_rate"] == "10.00"
    assert untouched.json()["name"] == "Walls"
    assert reset.json()["configured_tax_rate"] is None
    assert reset.json()["tax_amount"] == "21.00"


def test_milestone_validation(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)

    negative = client.post(f"{API}/projects/{project_id}/milestones", headers=headers, json={"name": "A", "budget": "-1"})
    precision = client.post(
        f"{API}/projects/{project_id}/milestones", headers=headers, json={"name": "A", "budget": "1.005"}
    )
    rate = client.post(
        f"{API}/projects/{project_id}/milestones",
        headers=headers,
        json={"name": "A", "budget": "10", "has_tax": True, "tax_rate": "101"},
    )

    assert negative.status_code == 422
    assert precision.status_code == 422
    assert rate.status_code == 422


def test_project_totals(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    taxed = create_milestone(client, headers, project_id, name="Structure", budget="1000.00", has_tax=True, tax_rate="21")
    untaxed = create_milestone(client, headers, project_id, name="Permits", budget="500.00")
    _add_tasks(client, headers, taxed, total=3, completed=1)
    _add_tasks(client, headers, untaxed, total=5, completed=5)

    first = client.get(f"{API}/projects/{project_id}/totals", headers=headers)
    second = client.get(f"{API}/projects/{project_id}/totals", headers=headers)

    assert first.status_code == 200
    body = first.json()
    assert body["base"] == "1500.00"
    assert body["tax"] == "210.00"
    assert body["total_with_tax"] == "1710.00"
    assert body["paid"] == "0.00"
    assert body["pending"] == "1710.00"
    assert body["currency_code"] == "EUR"
    assert body["total_tasks"] == 8
    assert body["completed_tasks"] == 6
    assert body["task_completion_percentage"] == "75.00"
    assert first.json() == second.json()

    milestone = client.get(f"{API}/milestones/{taxed}", headers=headers).json()
    assert milestone["task_completion_percentage"] == "33.33"


def test_task_lifecycle(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id)

    created = client.post(f"{API}/milestones/{milestone_id}/tasks", headers=headers, json={"name": "Pour concrete"})
    assert created.status_code == 201
    task_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    updated = client.patch(f"{API}/tasks/{task_id}", headers=headers, json={"status": "completed"})
    assert updated.json()["status"] == "completed"

    listed = client.get(f"{API}/milestones/{milestone_id}/tasks", headers=headers)
    assert [item["id"] for item in listed.json()["items"]] == [task_id]

    assert client.delete(f"{API}/tasks/{task_id}", headers=headers).status_code == 204
    assert client.get(f"{API}/milestones/{milestone_id}/tasks", headers=headers).json()["items"] == []


def test_project_delete_removes_payments(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id)
    client.post(f"{API}/payments", headers=headers, json={"milestone_id": milestone_id, "amount": "10.00"})

    assert client.delete(f"{API}/projects/{project_id}", headers=headers).status_code == 204
    assert client.get(f"{API}/payments", headers=headers).json()["items"] == []


def test_budget_must_fit_storage_precision(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)
    milestone_id = create_milestone(client, headers, project_id, budget="999999999999.99")

    too_large = client.post(
        f"{API}/projects/{project_id}/milestones", headers=headers, json={"name": "A", "budget": "1000000000000"}
    )
    update = client.patch(f"{API}/milestones/{milestone_id}", headers=headers, json={"budget": "1000000000000.00"})

    assert too_large.status_code == 422
    assert update.status_code == 422
    assert client.get(f"{API}/milestones/{milestone_id}", headers=headers).json()["budget"] == "999999999999.99"
