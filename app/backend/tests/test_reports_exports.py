from __future__ import annotations

import csv
import io
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from openpyxl import load_workbook

from conftest import API, auth_headers, create_milestone, create_project
from buildtrack.repositories.project_repository import ProjectRepository


def _seed_project(client: TestClient, headers: dict[str, str]) -> tuple[str, str, str]:
    project_id = create_project(client, headers)
    taxed = create_milestone(client, headers, project_id, name="Structure", budget="1000.00", has_tax=True, tax_rate="21")
    untaxed = create_milestone(client, headers, project_id, name="Permits", budget="500.00")
    client.post(
        f"{API}/milestones/{taxed}/tasks",
        headers=headers,
        json={"name": "Pour slab", "status": "completed", "due_date": "2026-03-01"},
    )
    client.post(f"{API}/payments", headers=headers, json={"milestone_id": taxed, "amount": "500.00"})
    client.post(
        f"{API}/payments/distributed",
        headers=headers,
        json={
            "description": "Bank transfer batch",
            "distributions": [
                {"milestone_id": taxed, "amount": "100.00"},
                {"milestone_id": untaxed, "amount": "250.00"},
            ],
        },
    )
    return project_id, taxed, untaxed


def test_project_report_tree(client: TestClient) -> None:
    headers = auth_headers()
    project_id, taxed, untaxed = _seed_project(client, headers)

    response = client.get(f"{API}/projects/{project_id}/report", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["currency_code"] == "EUR"
    assert body["totals"]["total_with_tax"] == "1710.00"
    assert body["totals"]["paid"] == "850.00"
    assert body["totals"]["pending"] == "860.00"

    by_id = {item["id"]: item for item in body["milestones"]}
    structure = by_id[taxed]
    assert structure["tax_rate"] == "21.00"
    assert structure["paid_amount"] == "600.00"
    assert structure["task_completion_percentage"] == "100.00"
    assert [task["name"] for task in structure["tasks"]] == ["Pour slab"]
    assert sorted(payment["amount"] for payment in structure["payments"]) == ["100.00", "500.00"]
    assert {payment["type"] for payment in structure["payments"]} == {"single", "distributed"}

    permits = by_id[untaxed]
    assert permits["tax_rate"] is None
    assert [payment["amount"] for payment in permits["payments"]] == ["250.00"]
    assert permits["payments"][0]["description"] == "Bank transfer batch"


def test_csv_export_has_one_row_per_milestone(client: TestClient) -> None:
    headers = auth_headers()
    project_id, _, _ = _seed_project(client, headers)

    response = client.get(f"{API}/exports/projects/{project_id}", headers=headers, params={"format": "csv"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert f"project-report-{project_id}.csv" in response.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(response.text)))
    assert [row["milestone"] for row in rows] == ["Structure", "Permits"]
    assert rows[0]["total_with_tax"] == "1210.00"
    assert rows[1]["paid_amount"] == "250.00"


def test_xlsx_export_sheets(client: TestClient) -> None:
    headers = auth_headers()
    project_id, _, _ = _seed_project(client, headers)

    response = client.get(f"{API}/exports/projects/{project_id}", headers=headers)

    assert response.status_code == 200
    workbook = load_workbook(io.BytesIO(response.content))
    assert workbook.sheetnames == ["Overview", "Milestones", "Tasks", "Payments"]
    overview = {row[0]: row[1] for row in workbook["Overview"].iter_rows(values_only=True)}
    assert overview["total_with_tax"] == "1710.00"
    payments = list(workbook["Payments"].iter_rows(values_only=True))
    assert payments[0][0] == "milestone"
    assert len(payments) == 4


def test_unknown_export_format_is_rejected(client: TestClient) -> None:
    headers = auth_headers()
    project_id = create_project(client, headers)

    response = client.get(f"{API}/exports/projects/{project_id}", headers=headers, params={"format": "pdf"})

    assert response.status_code == 422


def test_report_reads_from_one_snapshot(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    headers = auth_headers()
    project_id, _, _ = _seed_project(client, headers)
    calls: list[str] = []
    original_get_project = ProjectRepository.get_project

    def get_project(self, project_id, *, owner_id):
        calls.append("project")
        return original_get_project(self, project_id, owner_id=owner_id)

    monkeypatch.setattr(ProjectRepository, "begin_snapshot_read", lambda self: calls.append("snapshot"))
    monkeypatch.setattr(ProjectRepository, "get_project", get_project)

    body = client.get(f"{API}/projects/{project_id}/report", headers=headers).json()

    assert calls == ["snapshot", "project"]
    listed = sum(
        (Decimal(payment["amount"]) for item in body["milestones"] for payment in item["payments"]),
        Decimal("0"),
    )
    assert str(listed) == body["totals"]["paid"]


class _RecordingSession:
    def __init__(self, dialect_name: str) -> None:
        self.dialect_name = dialect_name
        self.calls: list[object] = []

    def get_bind(self):
        return SimpleNamespace(dialect=SimpleNamespace(name=self.dialect_name))

    def commit(self) -> None:
        self.calls.append("commit")

    def connection(self, execution_options=None):
        self.calls.append(execution_options)


def test_snapshot_read_uses_repeatable_read_on_postgresql() -> None:
    session = _RecordingSession("postgresql")

    ProjectRepository(session).begin_snapshot_read()

    assert session.calls == ["commit", {"isolation_level": "REPEATABLE READ"}]


def test_snapshot_read_is_a_no_op_on_sqlite() -> None:
    session = _RecordingSession("sqlite")

    ProjectRepository(session).begin_snapshot_read()

    assert session.calls == []
