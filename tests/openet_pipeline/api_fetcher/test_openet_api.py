import datetime as dt
import json
import logging

import pytest
import requests
from unittest.mock import MagicMock, patch

from openet_pipeline.api_fetcher import (
    ErrorKind,
    OpenETClient,
    OpenETConfigError,
    OpenETSettings,
    RequestValidationError,
)
from openet_pipeline.api_fetcher.openet_api import describe_operations, read_api_key_file
from openet_pipeline.api_fetcher.schema import RawResponse


API_KEY = "sk-openet-very-secret"


class FakeResponse:
    def __init__(self, status_code=200, body=None, content_type="application/json"):
        self.status_code = status_code
        self.content = json.dumps(body).encode("utf-8") if body is not None else b""
        self.headers = {"Content-Type": content_type}


@pytest.fixture
def client():
    c = OpenETClient(settings=OpenETSettings(api_key=API_KEY))
    c.session.request = MagicMock()
    return c


@pytest.mark.unit
def test_fields_timeseries_end_to_end(client):
    client.session.request.return_value = FakeResponse(
        200, [{"time": "2021-01-01", "field_id": "0001", "value_mm": 25.4}]
    )

    result = client.fields_timeseries(
        "0001", start_date="2021-01-01", end_date="2021-01-31", model="ensemble", units="in"
    )

    assert result.ok
    (row,) = result.value
    assert row.entity_id == "0001"
    assert row.et == pytest.approx(1.0)
    assert (row.year, row.month) == (2021, 1)
    assert row.units == "in"
    assert row.model == "ensemble"

    args, kwargs = client.session.request.call_args
    assert args == ("POST", "https://openet-api.org/geodatabase/timeseries")
    assert kwargs["headers"]["Authorization"] == API_KEY
    assert kwargs["json"]["field_ids"] == ["0001"]


@pytest.mark.unit
def test_forbidden_returns_error_record(client):
    client.session.request.return_value = FakeResponse(403, {"detail": "Forbidden"})

    result = client.account_quota()

    assert not result.ok
    assert result.error.kind is ErrorKind.FORBIDDEN
    assert result.error.hint == "credential invalid, expired, or quota exceeded"
    assert result.error.server_message == "Forbidden"


@pytest.mark.unit
def test_invalid_geometry_never_reaches_network(client):
    with patch.object(OpenETClient, "send") as send:
        with pytest.raises(RequestValidationError) as e:
            client.polygon_timeseries([-114.2, 33.5, -114.8, 33.7, -114.0])

    send.assert_not_called()
    assert "geometry" in e.value.invalid


@pytest.mark.unit
def test_account_quota_null_rendered_and_logged(client, caplog):
    client.session.request.return_value = FakeResponse(
        200, {"Tier": "Basic", "Cloud Project ID": None}
    )

    with caplog.at_level(logging.INFO):
        result = client.account_quota()

    assert result.value["Cloud Project ID"] == "None"
    assert "OpenET account quota:" in caplog.text
    assert API_KEY not in caplog.text


@pytest.mark.unit
def test_key_expiration(client):
    client.session.request.return_value = FakeResponse(200, {"Expiration date": "2027-01-31"})
    result = client.key_expiration()
    assert result.value["Expiration date"] == "2027-01-31"
    args, _ = client.session.request.call_args
    assert args == ("GET", "https://openet-api.org/home/key_expiration")


@pytest.mark.unit
def test_multipolygon_returns_url(client):
    client.session.request.return_value = FakeResponse(
        200, {"bucket_url": "https://storage.googleapis.com/openet/x.csv"}
    )
    url = client.multipolygon_timeseries("projects/me/assets/parcels").unwrap()
    assert url == "https://storage.googleapis.com/openet/x.csv"


@pytest.mark.unit
def test_multipolygon_legacy_get(client):
    client.session.request.return_value = FakeResponse(
        200, {"bucket_url": "https://storage.googleapis.com/openet/x.csv"}
    )
    client.multipolygon_timeseries("projects/me/assets/parcels", encoding="get")
    args, kwargs = client.session.request.call_args
    assert args[0] == "GET"
    assert kwargs["params"]["shapefile_asset_id"] == "projects/me/assets/parcels"
    assert kwargs["json"] is None


@pytest.mark.unit
def test_connection_error_becomes_transport_error(client, caplog):
    client.session.request.side_effect = requests.ConnectionError("no route to host")

    with caplog.at_level(logging.ERROR):
        result = client.fields_timeseries(["0001"])

    assert result.error.kind is ErrorKind.TRANSPORT
    assert result.error.http_status is None
    assert API_KEY not in caplog.text


@pytest.mark.unit
def test_timeout_becomes_transport_error(client):
    client.session.request.side_effect = requests.Timeout("read timed out")
    result = client.account_quota()
    assert result.error.kind is ErrorKind.TRANSPORT
    assert "timed out" in result.error.hint


@pytest.mark.unit
def test_send_is_called_once_per_call(client):
    with patch.object(
        OpenETClient, "send", return_value=RawResponse(status_code=500, content=b"")
    ) as send:
        result = client.account_quota()
    assert send.call_count == 1
    assert result.error.kind is ErrorKind.SERVER_ERROR


@pytest.mark.unit
def test_missing_key_raises_config_error():
    with pytest.raises(OpenETConfigError):
        OpenETClient(settings=OpenETSettings())


@pytest.mark.unit
def test_repr_hides_key(client):
    assert API_KEY not in repr(client)
    assert API_KEY not in repr(OpenETSettings(api_key=API_KEY))


@pytest.mark.unit
def test_verify_ssl_follows_settings_and_override():
    insecure = OpenETClient(settings=OpenETSettings(api_key=API_KEY, verify_ssl=False))
    assert insecure.session.verify is False

    forced = OpenETClient(api_key=API_KEY, verify_ssl=True, settings=OpenETSettings(verify_ssl=False))
    assert forced.session.verify is True


# -----------------------------
# Settings
# -----------------------------


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("OPENET_API_KEY", "OPENET_API_KEY_FILE", "OPENET_TIMEOUT_SEC", "OPENET_VERIFY_SSL"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.mark.unit
def test_settings_defaults(clean_env):
    settings = OpenETSettings.from_env()
    assert settings.api_key is None
    assert settings.timeout_sec == 120
    assert settings.verify_ssl is True


@pytest.mark.unit
def test_settings_from_env(clean_env):
    clean_env.setenv("OPENET_API_KEY", API_KEY)
    clean_env.setenv("OPENET_TIMEOUT_SEC", "30")
    clean_env.setenv("OPENET_VERIFY_SSL", "false")

    settings = OpenETSettings.from_env()

    assert settings.api_key == API_KEY
    assert settings.timeout_sec == 30
    assert settings.verify_ssl is False


@pytest.mark.unit
def test_settings_key_file(clean_env, tmp_path):
    key_file = tmp_path / "openet_key.txt"
    key_file.write_text(f"{API_KEY}\nsecond line ignored\n", encoding="utf-8")
    clean_env.setenv("OPENET_API_KEY_FILE", str(key_file))

    assert OpenETSettings.from_env().api_key == API_KEY


@pytest.mark.unit
@pytest.mark.parametrize(
    "name, value",
    [
        ("OPENET_TIMEOUT_SEC", "soon"),
        ("OPENET_TIMEOUT_SEC", "0"),
        ("OPENET_VERIFY_SSL", "maybe"),
    ],
)
def test_settings_invalid_values(clean_env, name, value):
    clean_env.setenv(name, value)
    with pytest.raises(OpenETConfigError):
        OpenETSettings.from_env()


@pytest.mark.unit
def test_read_api_key_file_errors(tmp_path):
    empty = tmp_path / "empty.txt"
    empty.write_text("\n", encoding="utf-8")
    with pytest.raises(OpenETConfigError):
        read_api_key_file(empty)
    with pytest.raises(OpenETConfigError):
        read_api_key_file(tmp_path / "missing.txt")


@pytest.mark.unit
def test_describe_operations_lists_catalog():
    ops = describe_operations()
    assert set(ops) == {
        "fields-timeseries",
        "polygon-timeseries",
        "multipolygon-timeseries",
        "account-quota",
        "key-expiration",
    }


@pytest.mark.unit
def test_fields_timeseries_feature_id_body(client):
    client.session.request.return_value = FakeResponse(
        200,
        [{"time": "2021-01-01", "end_date": "2021-01-31", "feature_id": "0001", "value_mm": 25.4}],
    )

    result = client.fields_timeseries(
        ["0001"], start_date="2021-01-01", end_date="2021-01-31", model="ensemble", units="in"
    )

    (row,) = result.unwrap()
    assert row.to_record() == {
        "date": dt.date(2021, 1, 1),
        "year": 2021,
        "month": 1,
        "julian_day": 1,
        "entity_id": "0001",
        "et": pytest.approx(1.0),
        "units": "in",
        "model": "ensemble",
    }
