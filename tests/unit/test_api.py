"""
Testes unitários para a API HTTP do Store.
"""
import pytest
from fastapi.testclient import TestClient

from store.main import _stream_response
from store.query import apply_force_stream, parse_list_params
from store.streams import ListStream


@pytest.fixture
def http(app):
    return TestClient(app)


def _create(http, body):
    response = http.post("/testtype", json=body)
    assert response.status_code == 201, f"Criação deveria retornar 201: {response.text}"
    return response.json()


def test_health(http):
    response = http.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_debug_and_metrics(http):
    _create(http, {"text": "foo"})

    debug = http.get("/_debug").json()
    assert debug["types"]["testtype"] == 1, "Debug deve contar registros por tipo"

    metrics = http.get("/metrics")
    assert metrics.status_code == 200
    assert "objstore_operations_total" in metrics.text, "Métricas Prometheus devem ser expostas"


def test_create_and_get(http):
    """POST devolve 201 com ETag; GET devolve o mesmo registro."""
    response = http.post("/testtype", json={"text": "foo", "num": 5})
    assert response.status_code == 201
    record = response.json()
    assert response.headers["etag"] == record["etag"], "Cabeçalho ETag deve ser o ETag do registro"

    response = http.get(f"/testtype/{record['id']}")
    assert response.status_code == 200
    assert response.json() == record


def test_type_name_case_insensitive(http):
    record = _create(http, {"text": "foo"})
    assert http.get(f"/TestType/{record['id']}").status_code == 200


def test_get_not_modified(http):
    """If-None-Match igual ao ETag atual devolve 304."""
    record = _create(http, {"text": "foo"})

    response = http.get(f"/testtype/{record['id']}", headers={"If-None-Match": record["etag"]})
    assert response.status_code == 304

    response = http.get(f"/testtype/{record['id']}", headers={"If-None-Match": "etag:velho"})
    assert response.status_code == 200


def test_replace_with_if_match(http):
    """PUT com If-Match desatualizado devolve 412 e não altera o registro."""
    record = _create(http, {"text": "foo", "num": 5})

    response = http.put(f"/testtype/{record['id']}", json={"text": "bar"}, headers={"If-Match": record["etag"]})
    assert response.status_code == 200
    assert response.json()["num"] == 0, "PUT zera campos omitidos"

    response = http.put(f"/testtype/{record['id']}", json={"text": "baz"}, headers={"If-Match": record["etag"]})
    assert response.status_code == 412
    assert "error" in response.json(), "Erros devem ter corpo {error: ...}"

    assert http.get(f"/testtype/{record['id']}").json()["text"] == "bar"


def test_patch(http):
    record = _create(http, {"text": "foo", "num": 5})

    response = http.patch(f"/testtype/{record['id']}", json={"num": 6})
    assert response.status_code == 200
    assert response.json()["text"] == "foo"
    assert response.json()["num"] == 6

    response = http.patch(f"/testtype/{record['id']}", json={"num": 7}, headers={"If-Match": record["etag"]})
    assert response.status_code == 412


def test_delete(http):
    record = _create(http, {"text": "foo"})

    response = http.delete(f"/testtype/{record['id']}", headers={"If-Match": "etag:errado"})
    assert response.status_code == 412

    response = http.delete(f"/testtype/{record['id']}", headers={"If-Match": record["etag"]})
    assert response.status_code == 204

    assert http.get(f"/testtype/{record['id']}").status_code == 404
    assert http.delete(f"/testtype/{record['id']}").status_code == 404


def test_not_found(http):
    assert http.get("/testtype/naoexiste").status_code == 404
    assert http.get("/outrotipo").status_code == 404
    assert http.post("/outrotipo", json={}).status_code == 404


@pytest.mark.parametrize("body", [
    b"",
    b"{invalido",
    b'{"num": "abc"}',
    b'{"id": "x"}',
    b'{"extra": 1}',
    b"[1, 2]",
])
def test_create_bad_request(http, body):
    """Corpos inválidos devolvem 400."""
    response = http.post("/testtype", content=body, headers={"Content-Type": "application/json"})
    assert response.status_code == 400, f"Corpo {body!r} deveria ser rejeitado"


def test_list_query_params(http):
    """Filtros, ordenação e paginação pela query string."""
    for num in (3, 1, 4, 1, 5):
        _create(http, {"text": f"n{num}", "num": num})

    response = http.get("/testtype", params={"num[gte]": "3", "_sort": "-num", "_limit": "2"})
    assert response.status_code == 200
    assert [r["num"] for r in response.json()] == [5, 4]

    response = http.get("/testtype", params={"num": "1"})
    assert len(response.json()) == 2, "Filtro eq implícito"


def test_list_not_modified(http):
    _create(http, {"text": "foo"})

    response = http.get("/testtype")
    etag = response.headers["etag"]

    assert http.get("/testtype", headers={"If-None-Match": etag}).status_code == 304

    _create(http, {"text": "bar"})
    assert http.get("/testtype", headers={"If-None-Match": etag}).status_code == 200, \
        "Lista alterada não deve devolver 304"


@pytest.mark.parametrize("params", [
    {"_limit": "-1"},
    {"_foo": "1"},
    {"cor": "azul"},
    {"_sort": "cor"},
    {"num[xx]": "1"},
])
def test_list_bad_request(http, params):
    assert http.get("/testtype", params=params).status_code == 400


def test_openapi(http):
    response = http.get("/openapi.json")
    assert response.status_code == 200
    assert "/{type_name}/{record_id}" in response.json()["paths"]


def test_invalid_force_stream(http):
    response = http.get("/testtype", headers={"Accept": "text/event-stream", "Force-Stream": "parcial"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_stream_response_headers_and_cleanup(store):
    """A resposta SSE informa o formato e desfaz a inscrição ao terminar."""
    opts = parse_list_params([("_stream", "full")])
    stream_format = apply_force_stream(opts, "diff")
    stream = ListStream(store, "testtype", opts, heartbeat_interval=0.05)
    await stream.open()

    response = _stream_response(stream, {"Stream-Format": stream_format.value})
    assert response.headers["stream-format"] == "diff"
    assert response.media_type == "text/event-stream"

    # Corpo iniciado: a inscrição existe até a tarefa de fim de resposta
    first = await response.body_iterator.__anext__()
    assert first.startswith("event: sync"), "Formato diff começa com sync"
    assert len(store.subscribers["testtype"]) == 1

    await response.background()
    assert store.subscribers["testtype"] == set(), "Fim da resposta deve cancelar a inscrição"
