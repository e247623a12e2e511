"""Health, metrics and root endpoints."""


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_health_reports_database_and_cache(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"] is True
    assert body["cache_backend"] == "memory"


def test_metrics_exposes_the_private_registry(client):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    assert "tutordesk_service_operations_total" in response.text
    assert "tutordesk_ledger_mutations_total" in response.text


def test_unknown_route_is_problem_json(client):
    response = client.get("/api/v1/nowhere")

    assert response.status_code == 404
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["instance"] == "/api/v1/nowhere"
