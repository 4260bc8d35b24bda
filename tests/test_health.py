def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["trace_id"]


def test_ready(client):
    response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["trace_id"]


def test_trace_id_is_echoed(client):
    response = client.get("/health", headers={"X-Trace-ID": "trace-health-1"})
    assert response.headers["X-Trace-ID"] == "trace-health-1"
    assert response.json()["trace_id"] == "trace-health-1"


def test_unusable_trace_id_is_replaced(client):
    oversized = "t" * 65
    response = client.get("/health", headers={"X-Trace-ID": oversized})
    trace_id = response.headers["X-Trace-ID"]
    assert trace_id != oversized
    assert len(trace_id) == 36
    assert response.json()["trace_id"] == trace_id

    response = client.get("/health", headers={"X-Trace-ID": "bad trace/id"})
    assert response.headers["X-Trace-ID"] != "bad trace/id"
