"""Tests for the POST /api/evaluate endpoint."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gridcalc.app import app


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def _columns(*names: str) -> dict:
    return {n: {"title": f"Column {n}"} for n in names}


def _post(client: TestClient, data: dict, columns=("A", "B", "C"), rows: int = 1):
    return client.post(
        "/api/evaluate",
        json={"columns": _columns(*columns), "rows": rows, "data": data},
    )


class TestEvaluate:
    def test_addition(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": "10"}, "B1": {"value": "20"}, "C1": {"formula": "=A1+B1"}})
        assert resp.status_code == 200
        body = resp.json()
        assert body["message"] == "Evaluation received"
        assert body["table"]["data"]["C1"]["value"] == "30"
        assert "error" not in body["table"]["data"]["C1"]

    def test_subtraction_and_multiplication(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": "20"}, "B1": {"value": "5"}, "C1": {"formula": "=A1-B1"}})
        assert resp.json()["table"]["data"]["C1"]["value"] == "15"
        resp = _post(client, {"A1": {"value": "10"}, "B1": {"value": "5"}, "C1": {"formula": "=A1*B1"}})
        assert resp.json()["table"]["data"]["C1"]["value"] == "50"

    def test_numeric_literal_values_accepted(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": 10}, "B1": {"value": 2.5}, "C1": {"formula": "=A1*B1"}})
        assert resp.status_code == 200
        assert resp.json()["table"]["data"]["C1"]["value"] == "25"

    def test_chained(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": "10"}, "B1": {"formula": "=A1*2"}, "C1": {"formula": "=B1+5"}})
        data = resp.json()["table"]["data"]
        assert data["B1"]["value"] == "20"
        assert data["C1"]["value"] == "25"

    def test_circular_reference(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"formula": "=B1"}, "B1": {"formula": "=A1"}}, columns=("A", "B"))
        assert resp.status_code == 200
        data = resp.json()["table"]["data"]
        assert data["B1"]["error"] == "#REF!"
        assert "value" not in data["A1"]

    def test_division_by_zero(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": "10"}, "B1": {"value": "0"}, "C1": {"formula": "=A1/B1"}})
        c1 = resp.json()["table"]["data"]["C1"]
        assert c1["error"] == "#DIV/0!"
        assert "value" not in c1
        assert c1["formula"] == "=A1/B1"

    def test_value_error(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"value": '"hello"'}, "B1": {"formula": "=A1*10"}}, columns=("A", "B"))
        assert resp.json()["table"]["data"]["B1"]["error"] == "#VALUE!"

    def test_missing_cell_reference(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"formula": "=Z99"}}, columns=("A",))
        assert resp.json()["table"]["data"]["A1"]["error"] == "#REF!"

    def test_empty_reference(self, client: TestClient) -> None:
        resp = _post(client, {"A1": {"formula": "=B1+5"}, "B1": {}}, columns=("A", "B"))
        assert resp.json()["table"]["data"]["A1"]["value"] == "5"

    def test_shape_is_preserved(self, client: TestClient) -> None:
        columns = {"A": {"title": "Price", "width": 120}, "B": {"title": "Qty"}}
        resp = client.post(
            "/api/evaluate",
            json={"columns": columns, "rows": 4, "data": {"A1": {"value": "3"}, "B1": {"formula": "=A1*2"}}},
        )
        table = resp.json()["table"]
        assert table["rows"] == 4
        assert table["columns"] == columns
        assert table["data"]["A1"] == {"value": "3"}

    def test_feeding_output_back_is_stable(self, client: TestClient) -> None:
        first = _post(client, {"A1": {"value": "4"}, "B1": {"formula": "=A1^2"}, "C1": {"formula": "=B1/0"}})
        table = first.json()["table"]
        second = client.post("/api/evaluate", json=table)
        assert second.json()["table"] == table


class TestMalformedRequests:
    def test_empty_object(self, client: TestClient) -> None:
        assert client.post("/api/evaluate", json={}).status_code == 400

    def test_missing_data(self, client: TestClient) -> None:
        resp = client.post("/api/evaluate", json={"rows": 1, "columns": {}})
        assert resp.status_code == 400
        assert "data" in resp.json()["detail"]

    def test_data_not_an_object(self, client: TestClient) -> None:
        assert client.post("/api/evaluate", json={"data": []}).status_code == 400

    def test_body_not_an_object(self, client: TestClient) -> None:
        assert client.post("/api/evaluate", json=[1, 2]).status_code == 400

    def test_not_json(self, client: TestClient) -> None:
        resp = client.post("/api/evaluate", content=b"not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_invalid_cell(self, client: TestClient) -> None:
        resp = client.post("/api/evaluate", json={"rows": 1, "columns": {}, "data": {"A1": "10"}})
        assert resp.status_code == 400

    def test_negative_rows(self, client: TestClient) -> None:
        resp = client.post("/api/evaluate", json={"rows": -1, "columns": {}, "data": {}})
        assert resp.status_code == 400


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}
