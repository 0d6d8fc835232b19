import json

import pytest
import requests

from territory_capture.activity_types import ActivityType
from territory_capture.errors import (
    TerritoryClaimError,
    TerritoryPayloadError,
    TerritoryPermissionError,
    TerritoryServiceError,
)
from territory_capture.territory_client import (
    TerritoryFeature,
    TerritoryService,
    create_default_session,
    parse_feature,
)
from territory_capture.territory_client.response_handling import extract_error

from conftest import CENTER, circle_route, make_feature


class FakeResp:
    """Minimal fake response matching needed parts of requests.Response."""

    def __init__(self, status_code=200, data=None, text=None):
        self.status_code = status_code
        self._data = data
        self._text = text

    def json(self):
        if self._data is None:
            raise ValueError("no JSON")
        return self._data

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._data)


class FakeSession:
    """Records requests and replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _row(feature_id="t1", **overrides):
    feature = make_feature(feature_id=feature_id)
    row = {
        "id": feature.id,
        "owner_id": feature.owner_id,
        "activity_type": "running",
        "area_m2": 812.5,
        "geojson": feature.geojson,
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-02T08:30:00+00:00",
    }
    row.update(overrides)
    return row


def _service(session):
    return TerritoryService(
        base_url="https://example.supabase.co/",
        api_key="anon-key",
        access_token="user-jwt",
        session=session,
        timeout=3,
    )


def test_requires_base_url():
    with pytest.raises(ValueError):
        TerritoryService(base_url="", session=FakeSession())


def test_fetch_territories_request_and_parsing():
    session = FakeSession(FakeResp(200, [_row("a"), {"id": "broken"}, _row("b")]))
    features = _service(session).fetch_territories()

    assert [f.id for f in features] == ["a", "b"]
    assert features[0].area_m2 == 812.5
    assert features[0].created_at.year == 2024
    method, url, kwargs = session.calls[0]
    assert method == "GET"
    assert url == "https://example.supabase.co/rest/v1/territory_geojson"
    assert kwargs["params"] == {"select": "*", "order": "updated_at.desc"}
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert kwargs["headers"]["Authorization"] == "Bearer user-jwt"
    assert kwargs["timeout"] == 3


def test_fetch_territories_rejects_non_list_payload():
    session = FakeSession(FakeResp(200, {"message": "not a list"}))
    with pytest.raises(TerritoryPayloadError):
        _service(session).fetch_territories()


def test_claim_territory_payload_shape():
    ring = [(59.0, 18.0), (59.001, 18.0), (59.001, 18.001), (59.0, 18.0)]
    session = FakeSession(FakeResp(200, [_row("srv-9", activity_type="golf")]))

    feature = _service(session).claim_territory("owner-1", ActivityType.GOLF, ring)

    assert feature.id == "srv-9"
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/rest/v1/rpc/claim_territory")
    assert kwargs["json"] == {
        "p_owner": "owner-1",
        "p_activity": "golf",
        "p_coordinates": [[lat, lon] for lat, lon in ring],
    }


def test_claim_territory_accepts_single_object():
    session = FakeSession(FakeResp(200, _row("srv-1")))
    assert _service(session).claim_territory("o", ActivityType.RUNNING, circle_route()).id == "srv-1"


@pytest.mark.parametrize("data", [[], [None]])
def test_claim_territory_empty_response(data):
    session = FakeSession(FakeResp(200, data))
    with pytest.raises(TerritoryClaimError):
        _service(session).claim_territory("o", ActivityType.RUNNING, circle_route())


def test_claim_territory_malformed_row():
    session = FakeSession(FakeResp(200, [{"id": "x"}]))
    with pytest.raises(TerritoryPayloadError):
        _service(session).claim_territory("o", ActivityType.RUNNING, circle_route())


@pytest.mark.parametrize(
    "status, error",
    [
        (401, TerritoryPermissionError),
        (403, TerritoryPermissionError),
        (400, TerritoryClaimError),
        (409, TerritoryClaimError),
        (500, TerritoryServiceError),
        (503, TerritoryServiceError),
    ],
)
def test_http_errors_are_mapped(status, error):
    body = {"message": "overlaps", "hint": "try elsewhere", "code": "P0001"}
    session = FakeSession(FakeResp(status, body))
    with pytest.raises(error) as excinfo:
        _service(session).claim_territory("o", ActivityType.RUNNING, circle_route())
    assert f"status {status}" in str(excinfo.value)
    assert "overlaps" in str(excinfo.value)


def test_permission_error_is_service_error():
    assert issubclass(TerritoryPermissionError, TerritoryServiceError)
    assert issubclass(TerritoryClaimError, TerritoryServiceError)


def test_network_error_is_wrapped():
    session = FakeSession(requests.ConnectionError("offline"))
    with pytest.raises(TerritoryServiceError) as excinfo:
        _service(session).fetch_territories()
    assert isinstance(excinfo.value.__cause__, requests.ConnectionError)


def test_non_json_success_body():
    session = FakeSession(FakeResp(200, None, text="<html>"))
    with pytest.raises(TerritoryPayloadError):
        _service(session).fetch_territories()


def test_extract_error_falls_back_to_text():
    assert extract_error(FakeResp(502, None, text="  Bad gateway  ")) == "Bad gateway"
    assert extract_error(FakeResp(500, {"details": "d", "code": "42"})) == "d | code:42"
    assert extract_error(None) is None


def test_default_session_retries_get_only():
    session = create_default_session()
    retry = session.get_adapter("https://example.supabase.co").max_retries
    assert "GET" in retry.allowed_methods
    assert "POST" not in retry.allowed_methods
    assert session.headers["Content-Type"] == "application/json"


# --- Feature mapping -------------------------------------------------
def test_feature_maps_lon_lat_to_lat_lon():
    ring = circle_route(radius_m=40.0, points=8)
    territory = make_feature(feature_id="m1", ring=ring, activity="Skidor").to_territory()

    assert territory is not None
    assert territory.activity is ActivityType.SKIING
    (polygon,) = territory.polygons
    assert polygon[0] == pytest.approx(ring[0])
    assert polygon[0] == polygon[-1]
    assert abs(polygon[0][0] - CENTER[0]) < 0.01


def test_feature_polygon_type_and_dropped_rings():
    good = [[lon, lat] for lat, lon in circle_route(points=6)]
    feature = TerritoryFeature(
        id="p1",
        owner_id="o",
        activity_type="hiking",
        area_m2=1.0,
        geojson={"type": "MultiPolygon", "coordinates": [[good], [[[18.0, 59.0]]], "junk"]},
    )
    territory = feature.to_territory()
    assert territory is not None
    assert len(territory.polygons) == 1

    polygon = TerritoryFeature(
        id="p2", owner_id="o", activity_type="hiking", area_m2=1.0,
        geojson={"type": "Polygon", "coordinates": [good]},
    )
    assert polygon.to_territory() is not None

    point = TerritoryFeature(
        id="p3", owner_id="o", activity_type="hiking", area_m2=1.0,
        geojson={"type": "Point", "coordinates": [18.0, 59.0]},
    )
    assert point.to_territory() is None


def test_feature_unknown_activity_maps_to_none():
    territory = make_feature(feature_id="u", activity="sailing").to_territory()
    assert territory is not None
    assert territory.activity is None


def test_parse_feature_skips_malformed_rows():
    assert parse_feature("nope") is None
    assert parse_feature({"id": "x", "owner_id": "o"}) is None
    assert parse_feature({"id": "x", "owner_id": "o", "area_m2": "big", "geojson": {}}) is None
    assert parse_feature(_row("ok", created_at="yesterday")).created_at is None
