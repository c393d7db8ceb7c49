# tests/test_api.py
"""Test the HTTP and WebSocket surface."""
import time

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_token
from defectvision.database import Base, SessionLocal, engine
from defectvision.main import app
from defectvision.models.inspection import AnalysisResult, DBInspection
from defectvision.routers.analysis import get_analysis_client
from defectvision.services.analysis import AnalysisError, validate_image_input


class FakeAnalysisClient:
    """Validates like the real client, then answers with a fixed outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = 0

    async def analyze(self, image_base64):
        validate_image_input(image_base64)
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


WARNING_RESULT = AnalysisResult.model_validate({
    "overall_status": "warning",
    "confidence": 88,
    "defects": [{"type": "Dent", "severity": "medium", "location": "side", "confidence": 77}],
})


@pytest.fixture
def analysis_client():
    fake = FakeAnalysisClient(WARNING_RESULT)
    app.dependency_overrides[get_analysis_client] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_analysis_client, None)


@pytest.fixture
def client(analysis_client):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as test_client:
        yield test_client


def stored_rows():
    db = SessionLocal()
    try:
        return db.query(DBInspection).all()
    finally:
        db.close()


def report_body(**overrides):
    body = {
        "inspections": [{
            "id": "INS-1", "productId": "PRD-1000", "timestamp": "09:00:00 AM",
            "status": "pass", "defectsFound": 0, "line": "Line A", "confidence": 97, "defects": [],
        }],
        "reportType": "single",
    }
    body.update(overrides)
    return body


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Welcome to DefectVision Backend"}
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["inspections"] == 0
    assert health["feed_running"] is True


@pytest.mark.parametrize("path, method", [
    ("/inspections", "get"),
    ("/inspections/metrics", "get"),
    ("/batch", "get"),
    ("/reports", "post"),
    ("/analysis", "post"),
])
def test_requires_authorization_header(client, path, method):
    response = getattr(client, method)(path)
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized: Missing or invalid authorization header"}


def test_rejects_invalid_token(client):
    response = client.get("/inspections", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized: Invalid token"}


def test_rejects_token_without_subject(client):
    headers = {"Authorization": f"Bearer {make_token(sub='')}"}
    assert client.get("/inspections", headers=headers).status_code == 401


def test_analysis_records_inspection(client, auth_headers, png_data_url):
    response = client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["result"]["overall_status"] == "warning"
    assert body["inspection"]["defectsFound"] == 1
    assert body["messages"] == ["Found 1 defect(s)."]
    assert body["status"]["status_text"] == "Warning"

    listing = client.get("/inspections", headers=auth_headers).json()
    assert [i["id"] for i in listing["inspections"]] == [body["inspection"]["id"]]
    assert listing["metrics"]["passRate"] == 100.0
    assert listing["defectDistribution"][0]["name"] == "Dent"

    rows = stored_rows()
    assert len(rows) == 1
    assert rows[0].user_id == "user-1"


def test_analysis_rejects_bad_image(client, auth_headers, analysis_client):
    response = client.post("/analysis", json={"imageBase64": "hello"}, headers=auth_headers)
    assert response.status_code == 400
    assert "Invalid image format" in response.json()["error"]
    assert analysis_client.calls == 0


def test_analysis_maps_gateway_errors(client, auth_headers, analysis_client, png_data_url):
    analysis_client.outcome = AnalysisError("Rate limit exceeded. Please try again in a moment.", status_code=429)
    response = client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
    assert response.status_code == 429
    assert response.json() == {"error": "Rate limit exceeded. Please try again in a moment."}
    assert client.get("/inspections", headers=auth_headers).json()["inspections"] == []


def test_metrics_and_clear(client, auth_headers, png_data_url):
    empty = client.get("/inspections/metrics", headers=auth_headers).json()
    assert empty["display"]["passRate"] == "—"
    assert empty["messages"] == ["No inspections yet"]

    client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
    metrics = client.get("/inspections/metrics", headers=auth_headers).json()
    assert metrics["metrics"]["totalInspections"] == 1
    assert metrics["display"]["passRate"] == "100.0%"

    cleared = client.delete("/inspections", headers=auth_headers).json()
    assert cleared == {"status": "success", "cleared": 1}
    assert client.get("/inspections", headers=auth_headers).json()["inspections"] == []


def test_dismiss_unknown_notice(client, auth_headers):
    response = client.delete("/inspections/notices/nope", headers=auth_headers)
    assert response.status_code == 404


def test_stored_history_seeds_session(client, auth_headers, png_data_url):
    first = client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers).json()
    # Restart the application against the same store
    with TestClient(app) as restarted:
        listing = restarted.get("/inspections", headers=auth_headers).json()
    assert [i["id"] for i in listing["inspections"]] == [first["inspection"]["id"]]


class TestReports:
    def test_generate(self, client, auth_headers):
        response = client.post("/reports", json=report_body(), headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body["reportType"] == "single"
        assert "Inspection Report - INS-1" in body["html"]

    def test_unknown_type_falls_back_to_single(self, client, auth_headers):
        body = client.post("/reports", json=report_body(reportType="weekly"), headers=auth_headers).json()
        assert body["reportType"] == "single"

    @pytest.mark.parametrize("inspections, message", [
        ("nope", "inspections must be an array"),
        ([], "No inspections provided"),
        (["x", 1], "No valid inspections found in request"),
    ])
    def test_bad_input(self, client, auth_headers, inspections, message):
        response = client.post("/reports", json=report_body(inspections=inspections), headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": message}

    def test_download(self, client, auth_headers):
        response = client.post("/reports/download", json=report_body(), headers=auth_headers)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="inspection-report-')
        assert disposition.endswith('.html"')

    def test_print(self, client, auth_headers):
        response = client.post("/reports/print", json=report_body(), headers=auth_headers)
        assert "window.print()" in response.text

    def test_session_report(self, client, auth_headers, png_data_url):
        assert client.get("/reports/session", headers=auth_headers).status_code == 400
        client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
        client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
        response = client.get("/reports/session?action=print", headers=auth_headers)
        assert "Daily Quality Control Report" in response.text
        assert "window.print()" in response.text


class TestBatch:
    def upload(self, client, auth_headers, png_bytes):
        files = [
            ("files", ("one.png", png_bytes, "image/png")),
            ("files", ("notes.txt", b"hello", "text/plain")),
            ("files", ("two.png", png_bytes, "image/png")),
        ]
        return client.post("/batch/items", files=files, headers=auth_headers)

    def wait_until_idle(self, client, auth_headers, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            state = client.get("/batch", headers=auth_headers).json()
            if not state["processing"] and state["pendingCount"] == 0:
                return state
            time.sleep(0.02)
        pytest.fail("batch run did not finish")

    def test_upload_skips_non_images(self, client, auth_headers, png_bytes):
        body = self.upload(client, auth_headers, png_bytes).json()
        assert [item["filename"] for item in body["added"]] == ["one.png", "two.png"]
        assert body["skipped"] == ["notes.txt"]
        assert body["pendingCount"] == 2
        assert body["items"][0]["statusText"] == "Pending"
        assert "image" not in body["items"][0]

    def test_remove_and_clear(self, client, auth_headers, png_bytes):
        body = self.upload(client, auth_headers, png_bytes).json()
        first_id = body["items"][0]["id"]
        after_remove = client.delete(f"/batch/items/{first_id}", headers=auth_headers).json()
        assert len(after_remove["items"]) == 1
        assert client.delete(f"/batch/items/{first_id}", headers=auth_headers).status_code == 404
        assert client.delete("/batch/items", headers=auth_headers).json()["items"] == []

    def test_run_records_inspections(self, client, auth_headers, png_bytes):
        self.upload(client, auth_headers, png_bytes)
        response = client.post("/batch/run", headers=auth_headers)
        assert response.status_code == 202

        state = self.wait_until_idle(client, auth_headers)
        assert state["completeCount"] == 2
        assert [item["result"]["defectsFound"] for item in state["items"]] == [1, 1]

        listing = client.get("/inspections", headers=auth_headers).json()
        assert len(listing["inspections"]) == 2
        assert any(n["title"] == "Batch Processing Complete" for n in listing["notices"])
        assert len(stored_rows()) == 2

    def test_failed_items_do_not_stop_the_run(self, client, auth_headers, analysis_client, png_bytes):
        analysis_client.outcome = AnalysisError("AI analysis failed")
        self.upload(client, auth_headers, png_bytes)
        client.post("/batch/run", headers=auth_headers)
        state = self.wait_until_idle(client, auth_headers)
        assert state["errorCount"] == 2
        assert state["items"][0]["error"] == "AI analysis failed"
        assert state["items"][0]["statusText"] == "Error"

    def test_run_without_pending_items(self, client, auth_headers):
        assert client.post("/batch/run", headers=auth_headers).status_code == 400

    def test_queue_locked_while_processing(self, client, auth_headers, png_bytes):
        app.state.batch_queue.processing = True
        try:
            assert self.upload(client, auth_headers, png_bytes).status_code == 409
            assert client.delete("/batch/items", headers=auth_headers).status_code == 409
            assert client.post("/batch/run", headers=auth_headers).status_code == 409
        finally:
            app.state.batch_queue.processing = False


class TestFeedSocket:
    def test_rejects_missing_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/inspections/feed") as websocket:
                websocket.receive_json()

    def test_pushes_snapshots(self, client, token, auth_headers, png_data_url):
        with client.websocket_connect(f"/inspections/feed?token={token}") as websocket:
            initial = websocket.receive_json()
            assert initial["inspections"] == []

            client.post("/analysis", json={"imageBase64": png_data_url}, headers=auth_headers)
            update = websocket.receive_json()
            assert len(update["inspections"]) == 1
            assert update["version"] > initial["version"]


def test_starts_with_incomplete_stored_rows(analysis_client, auth_headers):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        db.add(DBInspection(
            inspection_id="INS-EXT", product_id="PRD-2000", production_line="Line D",
            status="warning", defects_found=1, confidence=70,
            defects=[{"severity": "low"}], user_id="user-ext",
        ))
        db.commit()
    finally:
        db.close()

    with TestClient(app) as started:
        listing = started.get("/inspections", headers=auth_headers).json()
        assert started.get("/health").json()["feed_running"] is True
    assert listing["inspections"][0]["defects"][0]["type"] == "Unknown Defect"
