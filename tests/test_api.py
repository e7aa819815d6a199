"""HTTP surface tests: report, history, latest, health, viewer."""

import pytest


@pytest.mark.asyncio
async def test_report_then_history(client):
    resp = await client.post("/report", json={"identity": "A", "lat": 10, "lon": 20, "when": "t1"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    await client.post("/report", json={"identity": "A", "lat": 11, "lon": 21, "when": "t2", "token": "tok"})

    resp = await client.get("/get/A")
    assert resp.status_code == 200
    data = resp.json()
    assert data["identity"] == "A"
    assert [(l["lat"], l["lon"], l["when"]) for l in data["locations"]] == [(10, 20, "t1"), (11, 21, "t2")]
    assert data["locations"][1]["token"] == "tok"
    # unset optional fields are left out, not sent as null
    assert "token" not in data["locations"][0]
    assert "ip" not in data["locations"][0]
    assert "ip" not in data["locations"][1]


@pytest.mark.asyncio
async def test_history_limit(client):
    for i in range(5):
        await client.post("/report", json={"identity": "A", "lat": i, "lon": i, "when": f"t{i}"})
    resp = await client.get("/get/A", params={"limit": 2})
    assert [l["when"] for l in resp.json()["locations"]] == ["t3", "t4"]


@pytest.mark.asyncio
async def test_unknown_identity_is_empty_list(client):
    resp = await client.get("/get/nobody")
    assert resp.status_code == 200
    assert resp.json() == {"identity": "nobody", "locations": []}


@pytest.mark.asyncio
async def test_rejects_empty_identity(client, app):
    resp = await client.post("/report", json={"identity": "", "lat": 1, "lon": 1})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "identity is required"
    assert len(app.state.store) == 0


@pytest.mark.asyncio
async def test_rejects_unparseable_body(client, app):
    resp = await client.post("/report", content=b"{nope", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "body is not valid JSON"

    resp = await client.post("/report", content=b"lat=1")
    assert resp.status_code == 400
    assert len(app.state.store) == 0


@pytest.mark.asyncio
async def test_rejects_unrepresentable_numbers(client, app):
    body = b'{"identity": "A", "lat": 1' + b"0" * 400 + b', "lon": 1}'
    resp = await client.post("/report", content=body, headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "lat is not a number"

    resp = await client.post("/report", content=b"[" * 100000 + b"]" * 100000)
    assert resp.status_code == 400
    assert len(app.state.store) == 0


@pytest.mark.asyncio
async def test_rejects_out_of_range(client):
    resp = await client.post("/report", json={"identity": "A", "lat": 95, "lon": 1})
    assert resp.status_code == 400
    assert "lat out of range" in resp.json()["detail"]


@pytest.mark.asyncio
async def test_report_via_query_and_form(client):
    resp = await client.get("/report", params={"id": "dev", "lat": "1.5", "lon": "2.5"})
    assert resp.status_code == 200
    resp = await client.post("/report", data={"phone": "dev", "latitude": "3", "longitude": "4"})
    assert resp.status_code == 200

    locs = (await client.get("/get/dev")).json()["locations"]
    assert [(l["lat"], l["lon"]) for l in locs] == [(1.5, 2.5), (3, 4)]


@pytest.mark.asyncio
async def test_date_header_becomes_when(client):
    await client.post(
        "/report",
        json={"identity": "A", "lat": 1, "lon": 1},
        headers={"Date": "Wed, 21 Oct 2015 07:28:00 GMT"},
    )
    latest = (await client.get("/latest/A")).json()
    assert latest["when"] == "2015-10-21T07:28:00Z"


@pytest.mark.asyncio
async def test_latest(client):
    resp = await client.get("/latest/A")
    assert resp.status_code == 404
    await client.post("/report", json={"identity": "A", "lat": 1, "lon": 2, "when": "t1"})
    resp = await client.get("/latest/A")
    assert resp.status_code == 200
    latest = resp.json()
    assert latest["when"] == "t1"
    assert "token" not in latest and "ip" not in latest


@pytest.mark.asyncio
async def test_health(client):
    await client.post("/report", json={"identity": "A", "lat": 1, "lon": 2})
    data = (await client.get("/api/health")).json()
    assert data["status"] == "healthy"
    assert data["identities"] == 1
    assert data["samples"] == 1
    assert data["subscribers"] == 0
    assert data["total_published"] == 1


@pytest.mark.asyncio
async def test_viewer_page(client):
    resp = await client.get("/", params={"phone": "kali-device"})
    assert resp.status_code == 200
    assert "text/html" in resp.headers["content-type"]
    assert '"kali-device"' in resp.text
