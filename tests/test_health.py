import pytest
from conftest import url_prefix


@pytest.mark.asyncio
async def test_health(ac_client):
    res = await ac_client.get(f"{url_prefix}/health")
    assert res.status_code == 200
    assert res.json()["data"] == {"status": "healthy", "service": "storefront"}
    assert res.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_is_propagated(ac_client):
    res = await ac_client.get(f"{url_prefix}/orders/EST-0-NOPE", headers={"X-Request-ID": "req-42"})
    assert res.status_code == 404
    assert res.headers["X-Request-ID"] == "req-42"
    assert res.json()["request_id"] == "req-42"
