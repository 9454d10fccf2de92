"""
Testes unitários para o parsing e a aplicação das opções de listagem.
"""
import pytest

from common.errors import BadRequestError
from common.models import Filter, ListOpts, StreamFormat
from store.query import (apply_force_stream, apply_list_opts, coerce_value, matches, parse_list_params,
                         validate_list_opts)

RECORDS = [
    {"id": "a1", "text": "alpha", "num": 3},
    {"id": "b2", "text": "beta", "num": 1},
    {"id": "c3", "text": "gamma", "num": 2},
    {"id": "a4", "text": "delta", "num": 1},
]


def test_parse_reserved_params():
    """Parâmetros reservados viram campos de ListOpts."""
    opts = parse_list_params([
        ("_limit", "10"),
        ("_offset", "2"),
        ("_after", "abc"),
        ("_sort", "num,-text"),
        ("_sort", "id"),
        ("_stream", "diff"),
    ])

    assert opts.limit == 10
    assert opts.offset == 2
    assert opts.after == "abc"
    assert opts.sorts == ["num", "-text", "id"], "_sort aceita vírgulas e repetição"
    assert opts.stream == StreamFormat.DIFF


def test_parse_filters():
    """Demais parâmetros viram filtros, com operador opcional."""
    opts = parse_list_params([("text", "foo"), ("num[gte]", "2"), ("id[hp]", "ab")])

    assert [(f.path, f.op, f.value) for f in opts.filters] == [
        ("text", "eq", "foo"),
        ("num", "gte", "2"),
        ("id", "hp", "ab"),
    ]


@pytest.mark.parametrize("params", [
    [("_limit", "-1")],
    [("_offset", "x")],
    [("_stream", "parcial")],
    [("_desconhecido", "1")],
    [("num[maior]", "1")],
])
def test_parse_invalid_params(params):
    """Parâmetros inválidos levantam BadRequestError."""
    with pytest.raises(BadRequestError):
        parse_list_params(params)


def test_validate_list_opts():
    fields = {"id", "etag", "generation", "text", "num"}
    validate_list_opts(ListOpts(filters=[Filter(path="num", value="1")], sorts=["-text"]), fields)

    with pytest.raises(BadRequestError):
        validate_list_opts(ListOpts(sorts=["+cor"]), fields)


def test_coerce_value():
    """Valores da query string assumem o tipo do valor armazenado."""
    assert coerce_value("5", 1) == 5
    assert coerce_value("2.5", 1.0) == 2.5
    assert coerce_value("true", False) is True
    assert coerce_value("x", "y") == "x"

    with pytest.raises(BadRequestError):
        coerce_value("abc", 1)


def test_matches_operators():
    record = {"id": "abc123", "num": 3}

    assert matches(record, Filter(path="num", op="eq", value="3"))
    assert matches(record, Filter(path="num", op="gt", value="2"))
    assert matches(record, Filter(path="num", op="gte", value="3"))
    assert not matches(record, Filter(path="num", op="lt", value="3"))
    assert matches(record, Filter(path="num", op="lte", value="3"))
    assert matches(record, Filter(path="id", op="hp", value="abc"))
    assert not matches(record, Filter(path="id", op="hp", value="abd"))
    assert matches(record, Filter(path="num", op="in", value="1,3,5"))
    assert not matches(record, Filter(path="num", op="in", value="2,4"))


def test_apply_sort_is_stable_across_keys():
    """Ordenação por múltiplas chaves: a primeira é a mais significativa."""
    result = apply_list_opts(RECORDS, ListOpts(sorts=["num", "-text"]))
    assert [r["id"] for r in result] == ["a4", "b2", "c3", "a1"]


def test_apply_after_offset_limit():
    """_after, _offset e _limit são aplicados depois da ordenação."""
    opts = ListOpts(sorts=["id"], after="a4", offset=1, limit=1)
    result = apply_list_opts(RECORDS, opts)
    assert [r["id"] for r in result] == ["c3"], "Depois de a4: b2, c3; offset 1, limit 1"


def test_apply_after_unknown_id():
    """_after com id fora do resultado devolve lista vazia."""
    assert apply_list_opts(RECORDS, ListOpts(after="zz")) == []


def test_apply_keeps_insertion_order_without_sort():
    result = apply_list_opts(RECORDS, ListOpts(filters=[Filter(path="num", value="1")]))
    assert [r["id"] for r in result] == ["b2", "a4"]


def test_force_stream_overrides_stream_param():
    """Force-Stream tem precedência sobre _stream."""
    opts = parse_list_params([("_stream", "full")])
    assert apply_force_stream(opts, "diff") == StreamFormat.DIFF
    assert opts.stream == StreamFormat.DIFF

    assert apply_force_stream(parse_list_params([("_stream", "diff")]), None) == StreamFormat.DIFF
    assert apply_force_stream(ListOpts(), None) == StreamFormat.FULL, "Sem formato, o padrão é full"

    with pytest.raises(BadRequestError):
        apply_force_stream(ListOpts(), "parcial")
