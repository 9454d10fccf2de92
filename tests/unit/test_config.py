"""
Testes unitários para configuração, logging e utilitários comuns.
"""
import json
import logging

import pytest

from common.errors import BadRequestError, NotFoundError, PreconditionFailedError, StoreError, error_for_status
from common.logging import JsonFormatter
from common.utils import compute_etag, compute_list_etag, get_env_bool, get_env_int, parse_json
from store.config import StoreSettings, load_config


def test_load_config_defaults():
    settings = load_config("")
    assert isinstance(settings, StoreSettings)
    assert settings.port > 0
    assert settings.stream_heartbeat_interval > 0


def test_load_config_from_yaml(tmp_path):
    config_file = tmp_path / "store.yaml"
    config_file.write_text("port: 9090\ndata_path: /tmp/store.json\nstream_heartbeat_interval: 1.5\n")

    settings = load_config(str(config_file))

    assert settings.port == 9090
    assert settings.data_path == "/tmp/store.json"
    assert settings.stream_heartbeat_interval == 1.5


def test_load_config_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "naoexiste.yaml"))

    config_file = tmp_path / "lista.yaml"
    config_file.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(str(config_file))


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("STORE_TEST_INT", "42")
    monkeypatch.setenv("STORE_TEST_BAD_INT", "x")
    monkeypatch.setenv("STORE_TEST_BOOL", "yes")

    assert get_env_int("STORE_TEST_INT", 1) == 42
    assert get_env_int("STORE_TEST_BAD_INT", 1) == 1, "Valor inválido usa o padrão"
    assert get_env_bool("STORE_TEST_BOOL") is True
    assert get_env_bool("STORE_TEST_AUSENTE", True) is True


def test_etag_ignores_etag_field():
    record = {"id": "a", "generation": 1, "text": "x"}
    etag = compute_etag(record)

    assert etag.startswith("etag:")
    assert compute_etag({**record, "etag": etag}) == etag, "Campo etag não entra no hash"
    assert compute_etag({**record, "generation": 2}) != etag, "Geração entra no hash"


def test_list_etag_depends_on_order():
    assert compute_list_etag(["etag:a", "etag:b"]) != compute_list_etag(["etag:b", "etag:a"])
    assert compute_list_etag([]) == compute_list_etag([])


def test_parse_json():
    assert parse_json('{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        parse_json("{")


def test_error_for_status():
    assert isinstance(error_for_status(400, "x"), BadRequestError)
    assert isinstance(error_for_status(422, "x"), BadRequestError)
    assert isinstance(error_for_status(404, "x"), NotFoundError)
    assert isinstance(error_for_status(412, "x"), PreconditionFailedError)

    error = error_for_status(500, "falha")
    assert type(error) is StoreError
    assert error.status_code == 500
    assert error.message == "falha"


def test_json_formatter():
    formatter = JsonFormatter("store", detailed=True)
    record = logging.LogRecord("store.test", logging.INFO, __file__, 10, "Record created", None, None)
    record.context = {"type": "testtype", "id": "a"}

    data = json.loads(formatter.format(record))

    assert data["component"] == "store"
    assert data["level"] == "INFO"
    assert data["message"] == "Record created"
    assert data["context"] == {"type": "testtype", "id": "a"}
    assert data["lineno"] == 10
