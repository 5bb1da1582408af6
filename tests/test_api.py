import httpx
import pytest

from skyfare.core.config import Settings
from skyfare.main import app
from skyfare.services.aggregator import Aggregator, get_aggregator
from skyfare.services.cache import InMemoryCache
from skyfare.services.providers import DriverFactory
from skyfare.utils.dev_token import main as token_cli, make_token


@pytest.fixture
def aggregator(registry, vault, session_factory):
    registry.register("demo", "Demo", "dummy", priority=10, api_key="demo-key")
    registry.register("off", "Off", "dummy", priority=5, is_active=False)
    agg = Aggregator(
        registry,
        DriverFactory(vault, session_factory=session_factory),
        cache=InMemoryCache(),
        settings=Settings(RETRY_DELAY_MS=0),
    )
    app.dependency_overrides[get_aggregator] = lambda: agg
    yield agg
    app.dependency_overrides.clear()


@pytest.fixture
async def client(aggregator):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def _auth_headers(email: str = "ops@skyfare.test") -> dict:
    return {"Authorization": f"Bearer {make_token(email)}"}


def test_dev_token_cli(capsys):
    assert token_cli([]) == 1
    assert token_cli(["ops@skyfare.test"]) == 0
    assert capsys.readouterr().out.strip().count(".") == 2


@pytest.mark.anyio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


@pytest.mark.anyio
async def test_search_returns_sorted_offers(client):
    r = await client.get("/search", params={"origin": "cdg", "destination": "bcn", "date": "2030-05-10"})
    assert r.status_code == 200
    body = r.json()
    totals = [o["price"]["total"] for o in body["results"]]
    assert body["count"] == len(totals) > 0
    assert totals == sorted(totals)
    assert [s["code"] for s in body["sources"]] == ["demo"]
    assert body["sources"][0]["status"] == "succeeded"
    assert body["no_sources_queried"] is False
    assert "raw_payload" not in body["results"][0]


@pytest.mark.anyio
@pytest.mark.parametrize("params", [
    {"date": "10/05/2030"},
    {"date": "2030-05-10", "return_date": "2030-05-01"},
    {"date": "2030-05-10", "adults": 0},
])
async def test_search_rejects_bad_input(client, params):
    query = {"origin": "CDG", "destination": "BCN"}
    query.update(params)
    r = await client.get("/search", params=query)
    assert r.status_code == 400


@pytest.mark.anyio
async def test_search_single_supplier(client):
    r = await client.get("/search", params={"origin": "CDG", "destination": "BCN", "date": "2030-05-10", "supplier": "off"})
    assert r.status_code == 200
    assert r.json()["no_sources_queried"] is True


@pytest.mark.anyio
async def test_offer_lookup(client):
    r = await client.get("/offers/demo_0000000000000000")
    assert r.status_code == 404

    search = await client.get("/search", params={"origin": "CDG", "destination": "BCN", "date": "2030-05-10"})
    offer = search.json()["results"][0]
    r = await client.get(f"/offers/{offer['id']}")
    assert r.status_code == 200
    assert r.json()["id"] == offer["id"]
    assert r.json()["supplier_code"] == "demo"


@pytest.mark.anyio
async def test_suppliers_require_token(client):
    r = await client.get("/api/suppliers")
    assert r.status_code == 401
    r = await client.get("/api/suppliers", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    expired = make_token("ops@skyfare.test", ttl_seconds=-60)
    r = await client.get("/api/suppliers", headers={"Authorization": f"Bearer {expired}"})
    assert r.status_code == 401


@pytest.mark.anyio
async def test_suppliers_listing_hides_credentials(client):
    r = await client.get("/api/suppliers", headers=_auth_headers())
    assert r.status_code == 200
    suppliers = r.json()["suppliers"]
    assert [s["code"] for s in suppliers] == ["demo", "off"]
    assert suppliers[0]["has_credentials"] is True
    assert "demo-key" not in r.text
    assert not any(k.startswith("api_") for k in suppliers[0])


@pytest.mark.anyio
async def test_supplier_probe(client, registry):
    registry.mark_unhealthy("demo")
    r = await client.post("/api/suppliers/demo/test", headers=_auth_headers())
    assert r.status_code == 200
    body = r.json()
    assert body["code"] == "demo"
    assert body["success"] is True
    assert body["is_healthy"] is True
    assert registry.get("demo").is_healthy is True

    missing = await client.post("/api/suppliers/ghost/test", headers=_auth_headers())
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_supplier_test_survives_driver_bug(client, registry, monkeypatch):
    from skyfare.providers.dummy import DummyProvider

    async def broken(self):
        raise AttributeError("'NoneType' object has no attribute 'get'")

    monkeypatch.setattr(DummyProvider, "_probe", broken)
    r = await client.post("/api/suppliers/demo/test", headers=_auth_headers())
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is False
    assert body["is_healthy"] is False
    assert registry.get("demo").is_healthy is False
