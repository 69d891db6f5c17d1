import pytest
from backend.tests.fakes import FakePlaces, make_services
from backend.venue_search.main import create_app
from fastapi.testclient import TestClient


@pytest.fixture
def services():
    return make_services()


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _search(client, **body):
    body.setdefault("query", "pizza in Tel Aviv")
    return client.post("/v1/search", json=body)


class TestSearchEndpoint:
    def test_response_shape(self, client):
        response = _search(client)
        assert response.status_code == 200
        data = response.json()

        assert set(data) >= {"requestId", "query", "results", "groups", "chips", "meta", "assist"}
        meta = data["meta"]
        assert meta["mode"] == "NORMAL"
        assert meta["failureReason"] == "NONE"
        assert meta["granularity"] == "CITY"
        assert meta["openNowSummary"]["total"] == 6
        assert meta["capabilities"] == {"closedNowIsDerived": False}

        item = data["results"][0]
        assert {"id", "name", "openNow", "distanceMeters", "score", "matchReasons"} <= set(item)
        assert item["openNow"] == "open"

        chips = {chip["id"]: chip for chip in data["chips"]}
        assert chips["view_list"]["kind"] == "VIEW"
        assert chips["view_list"]["active"] is True
        assert chips["view_list"]["effect"] == {"view": "list"}

        assert data["assist"]["mode"] == "NORMAL"
        assert "question" not in data["assist"]

    def test_exclude_flag_sets_capability(self, client, services):
        response = _search(client, filters={"openNow": "exclude"})
        meta = response.json()["meta"]
        assert meta["capabilities"]["closedNowIsDerived"] is True
        assert services.places.calls[0][2].open_now is None

    def test_boolean_open_now(self, client, services):
        _search(client, filters={"openNow": True})
        assert services.places.calls[0][2].open_now is True

    def test_open_now_omitted_means_unset(self, client, services):
        data = _search(client, filters={}).json()
        assert data["intent"]["openNow"] == "unset"
        assert services.places.calls[0][2].open_now is None

    def test_request_id_header(self, client):
        response = _search(client, query="pizza", regionCode="il")
        assert response.headers["X-Request-ID"]
        echoed = client.post(
            "/v1/search", json={"query": "pizza"}, headers={"X-Request-ID": "trace-me"}
        )
        assert echoed.headers["X-Request-ID"] == "trace-me"

    @pytest.mark.parametrize(
        "body",
        [
            {"query": "   "},
            {"query": "pizza", "filters": {"priceLevels": [7]}},
            {"query": "pizza", "filters": {"openNow": "sometimes"}},
            {"query": "pizza", "userLocation": {"lat": 120, "lng": 0}},
            {"query": "pizza", "regionCode": "ISR"},
        ],
    )
    def test_validation(self, client, body):
        assert client.post("/v1/search", json=body).status_code == 422


class TestDeferredAssistant:
    def test_skip_then_fetch(self, client):
        data = _search(client, skipNarration=True).json()
        assert "assist" not in data

        response = client.get(f"/v1/search/{data['requestId']}/assistant")
        assert response.status_code == 200
        body = response.json()
        assert body["requestId"] == data["requestId"]
        assert body["assist"]["message"]

    def test_unknown_request(self, client):
        assert client.get("/v1/search/nope/assistant").status_code == 404


def test_recovery_over_http():
    services = make_services(places=FakePlaces([]))
    with TestClient(create_app(services)) as client:
        data = _search(client, filters={"uiLanguage": "he"}).json()
    assert data["meta"]["mode"] == "RECOVERY"
    assert data["meta"]["failureReason"] == "NO_RESULTS"
    assert data["meta"]["language"] == "he"
    assert all(chip["kind"] == "RECOVERY" for chip in data["chips"])


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["admission"]["max_concurrent"] == 4
    assert "provider" in data["caches"]
