async def test_health_endpoint_returns_200(client):
    response = await client.get("/api/health")
    assert response.status_code == 200


async def test_health_endpoint_has_required_fields(client):
    data = (await client.get("/api/health")).json()
    assert data["status"] == "healthy"
    assert data["message"] == "Service is healthy"
    assert data["database"] == "healthy"
    assert "timestamp" in data
    assert "environment" in data
    assert data["version"] == "1.0.0"


async def test_quota_status(client, quota_manager):
    quota_manager.handle_quota_exceeded("gemini", "429 RESOURCE_EXHAUSTED retryDelay: 30s")

    response = await client.get("/api/health/quota")

    assert response.status_code == 200
    data = response.json()
    assert data["providers"]["gemini"]["available"] is False
    assert data["providers"]["openai"]["available"] is True
    assert data["best_available"] == {"ocr": "enhanced-fallback-ocr", "compliance": "openai"}
    assert data["success"] is True
    assert data["message"] == "Quota status retrieved"
