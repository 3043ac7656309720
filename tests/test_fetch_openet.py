import datetime as dt
import importlib.util
import json
import os
import sys
import types
from pathlib import Path

import pytest


def load_module():
    script = Path(__file__).resolve().parents[1] / "scripts" / "fetch_openet.py"
    spec = importlib.util.spec_from_file_location("fetch_openet", script)
    mod = importlib.util.module_from_spec(spec)
    sys.modules[spec.name] = mod
    spec.loader.exec_module(mod)  # type: ignore
    return mod


@pytest.fixture
def mod(monkeypatch):
    for name in ("OPENET_API_KEY", "OPENET_API_KEY_FILE", "OPENET_TIMEOUT_SEC", "OPENET_VERIFY_SSL"):
        monkeypatch.delenv(name, raising=False)
    return load_module()


def install_fake_client(monkeypatch, mod, result=None, exc=None):
    calls = {}

    class FakeClient:
        def __init__(self, **kwargs):
            calls["init"] = kwargs

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            calls["closed"] = True

        def call(self, operation, params=None, encoding=None):
            calls["call"] = (operation, params, encoding)
            if exc is not None:
                raise exc
            return result

    monkeypatch.setattr(mod, "OpenETClient", FakeClient)
    return calls


def _rows_result(mod):
    from openet_pipeline.api_fetcher.schema import CanonicalRow, NormalizedResult

    row = CanonicalRow(
        date=dt.date(2021, 1, 1),
        year=2021,
        month=1,
        julian_day=1,
        entity_id="0001",
        et=1.0,
        units="in",
        model="ensemble",
    )
    return NormalizedResult(operation="fields-timeseries", value=[row])


def test_parse_param_pairs(mod):
    params = mod.parse_param_pairs(
        ["field_ids=0001,0002", "units=in", "field_ids=0003", "provisional=true"]
    )
    assert params == {
        "field_ids": ["0001", "0002", "0003"],
        "units": "in",
        "provisional": "true",
    }


def test_parse_param_pairs_rejects_bare_word(mod):
    with pytest.raises(ValueError):
        mod.parse_param_pairs(["field_ids"])


def test_fields_rows_written_to_csv(tmp_path, monkeypatch, mod):
    calls = install_fake_client(monkeypatch, mod, result=_rows_result(mod))
    out = tmp_path / "out" / "et.csv"

    code = mod.main(
        [
            "--operation", "fields-timeseries",
            "--param", "field_ids=0001",
            "--param", "start_date=2021-01-01",
            "--out", str(out),
            "--log-level", "ERROR",
        ]
    )

    assert code == 0
    assert calls["call"] == (
        "fields-timeseries",
        {"field_ids": "0001", "start_date": "2021-01-01"},
        None,
    )
    assert calls["closed"] is True
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "date,year,month,julian_day,entity_id,et,units,model"
    assert lines[1] == "2021-01-01,2021,1,1,0001,1.0,in,ensemble"


def test_insecure_flag_and_key_file(tmp_path, monkeypatch, mod):
    key_file = tmp_path / "key.txt"
    key_file.write_text("file-key\n", encoding="utf-8")
    calls = install_fake_client(monkeypatch, mod, result=_rows_result(mod))

    code = mod.main(
        [
            "--operation", "fields-timeseries",
            "--param", "field_ids=0001",
            "--api-key-file", str(key_file),
            "--insecure",
            "--log-level", "ERROR",
        ]
    )

    assert code == 0
    assert calls["init"]["api_key"] == "file-key"
    assert calls["init"]["verify_ssl"] is False


def test_quota_summary_printed(tmp_path, monkeypatch, capsys, mod):
    from openet_pipeline.api_fetcher.schema import NormalizedResult, QuotaRecord

    result = NormalizedResult(
        operation="account-quota",
        value=QuotaRecord(entries={"Tier": "Basic", "Cloud Project ID": "None"}),
    )
    install_fake_client(monkeypatch, mod, result=result)
    out = tmp_path / "quota.csv"

    code = mod.main(["--operation", "account-quota", "--out", str(out), "--log-level", "ERROR"])

    assert code == 0
    assert "OpenET account quota:" in capsys.readouterr().out
    assert out.read_text(encoding="utf-8").splitlines()[0] == "Tier,Cloud Project ID"


def test_export_url_pointer_written(tmp_path, monkeypatch, mod):
    from openet_pipeline.api_fetcher.schema import NormalizedResult

    url = "https://storage.googleapis.com/openet/x.csv"
    result = NormalizedResult(operation="multipolygon-timeseries", value=url)
    calls = install_fake_client(monkeypatch, mod, result=result)
    out = tmp_path / "export.json"

    code = mod.main(
        [
            "--operation", "multipolygon-timeseries",
            "--param", "asset_id=projects/me/assets/parcels",
            "--encoding", "get",
            "--out", str(out),
            "--log-level", "ERROR",
        ]
    )

    assert code == 0
    assert calls["call"][2] == "get"
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload["operation"] == "multipolygon-timeseries"
    assert payload["url"] == url
    assert "requested_at" in payload


def test_api_failure_exit_code_and_no_output(tmp_path, monkeypatch, mod):
    from openet_pipeline.api_fetcher.errors import ErrorKind
    from openet_pipeline.api_fetcher.schema import ErrorRecord, NormalizedResult

    result = NormalizedResult(
        operation="fields-timeseries",
        error=ErrorRecord(kind=ErrorKind.FORBIDDEN, http_status=403, hint="quota exceeded"),
    )
    install_fake_client(monkeypatch, mod, result=result)
    out = tmp_path / "et.csv"

    code = mod.main(
        ["--operation", "fields-timeseries", "--param", "field_ids=0001", "--out", str(out)]
    )

    assert code == 1
    assert not out.exists()


def test_validation_error_exit_code(monkeypatch, mod):
    from openet_pipeline.api_fetcher import RequestValidationError

    install_fake_client(
        monkeypatch,
        mod,
        exc=RequestValidationError("missing field_ids", missing=["field_ids"]),
    )

    assert mod.main(["--operation", "fields-timeseries", "--log-level", "ERROR"]) == 2


def test_bad_param_pair_exit_code(monkeypatch, mod):
    install_fake_client(monkeypatch, mod)
    assert mod.main(["--operation", "account-quota", "--param", "oops", "--log-level", "ERROR"]) == 2


def test_missing_key_exit_code(mod):
    # Real client: no key configured anywhere.
    assert mod.main(["--operation", "account-quota", "--log-level", "ERROR"]) == 2


def test_atomic_write_cleans_up_temp_file_on_failure(tmp_path, monkeypatch, mod):
    dest = tmp_path / "out" / "et.csv"

    def fail_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(mod, "os", types.SimpleNamespace(fsync=os.fsync, replace=fail_replace))

    with pytest.raises(OSError):
        mod.atomic_write_bytes(dest, b"date,et\n")

    assert not dest.exists()
    assert list(dest.parent.iterdir()) == []


def test_atomic_write_replaces_existing_file(tmp_path, mod):
    dest = tmp_path / "et.csv"
    dest.write_text("old\n", encoding="utf-8")

    mod.atomic_write_bytes(dest, b"new\n")

    assert dest.read_text(encoding="utf-8") == "new\n"
    assert list(tmp_path.iterdir()) == [dest]
