from fastapi.testclient import TestClient


def test_scaffold_modules_exist():
    import app.obs.context as ctx
    import app.obs.logger as log
    import app.obs.metrics as met
    import app.obs.middleware as mid

    assert hasattr(ctx, "search_id_var")
    assert hasattr(log, "log_event")
    assert hasattr(met, "get_counter")
    assert hasattr(mid, "ObservabilityMiddleware")


def test_inbound_request_id_is_propagated(capsys):
    from main import app
    client = TestClient(app)

    r = client.get("/health", headers={"x-request-id": "edge-123"})
    assert r.headers["x-request-id"] == "edge-123"
    assert '"request_id":"edge-123"' in capsys.readouterr().out


def test_fresh_request_id_when_missing():
    from main import app
    client = TestClient(app)

    first = client.get("/health").headers["x-request-id"]
    second = client.get("/health").headers["x-request-id"]
    assert first and second and first != second


def test_unknown_route_counted_by_path():
    from app.obs.metrics import get_counter
    from main import app
    client = TestClient(app)

    assert client.get("/nope").status_code == 404
    assert get_counter("requests_total", {"route": "/nope", "status": "404"}) == 1
