import pytest
from unittest.mock import patch


@pytest.mark.asyncio
async def test_liveness(api_client):
    client, _ = api_client
    response = await client.get("/health/live")
    assert response.status_code == 200
    assert response.json() == {"alive": True}


@pytest.mark.asyncio
async def test_ready_with_database_and_no_webhook(api_client):
    client, _ = api_client
    with patch("routers.health.settings.ALERT_WEBHOOK_URL", ""):
        response = await client.get("/health/ready")
    assert response.status_code == 200
    assert response.json() == {"ready": True}


@pytest.mark.asyncio
async def test_not_ready_when_webhook_secret_is_short(api_client):
    client, _ = api_client
    with patch("routers.health.settings.ALERT_WEBHOOK_URL", "https://hooks.example.com/audit"), \
         patch("routers.health.settings.ALERT_WEBHOOK_SECRET", "short"):
        response = await client.get("/health/ready")
    assert response.status_code == 503
    assert response.json() == {"ready": False, "missing": ["ALERT_WEBHOOK_SECRET"]}
