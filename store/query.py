"""
Parsing e aplicação das opções de listagem (filtros, ordenação, paginação).
"""
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from common.errors import BadRequestError
from common.models import FILTER_OPS, Filter, ListOpts, StreamFormat

# "campo[op]" na query string
FILTER_KEY_RE = re.compile(r"^([^\[\]]+)\[([a-z]+)\]$")


def _parse_non_negative(name: str, raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise BadRequestError(f"{name} inválido: {raw!r}")
    if value < 0:
        raise BadRequestError(f"{name} não pode ser negativo: {value}")
    return value


def parse_list_params(items: Iterable[Tuple[str, str]]) -> ListOpts:
    """
    Converte os parâmetros da query string em ListOpts.

    Parâmetros reservados começam com "_" (_limit, _offset, _after, _sort,
    _stream); os demais são filtros no formato `campo=valor` ou
    `campo[op]=valor`.

    Args:
        items: Pares (chave, valor), com repetição

    Returns:
        ListOpts: Opções de listagem

    Raises:
        BadRequestError: Se algum parâmetro for inválido
    """
    opts = ListOpts()

    for key, value in items:
        if key == "_limit":
            opts.limit = _parse_non_negative("_limit", value)
        elif key == "_offset":
            opts.offset = _parse_non_negative("_offset", value)
        elif key == "_after":
            opts.after = value
        elif key == "_sort":
            opts.sorts.extend(s for s in value.split(",") if s)
        elif key == "_stream":
            try:
                opts.stream = StreamFormat(value)
            except ValueError:
                raise BadRequestError(f"_stream inválido: {value!r}")
        elif key.startswith("_"):
            raise BadRequestError(f"Parâmetro desconhecido: {key}")
        else:
            match = FILTER_KEY_RE.match(key)
            if match:
                path, op = match.group(1), match.group(2)
            else:
                path, op = key, "eq"
            if op not in FILTER_OPS:
                raise BadRequestError(f"Operador de filtro desconhecido: {op}")
            opts.filters.append(Filter(path=path, op=op, value=value))

    return opts


def validate_list_opts(opts: ListOpts, fields: Set[str]):
    """
    Garante que filtros e ordenações só usam campos do tipo.

    Raises:
        BadRequestError: Campo desconhecido
    """
    for f in opts.filters:
        if f.path not in fields:
            raise BadRequestError(f"Campo de filtro desconhecido: {f.path}")
    for sort in opts.sorts:
        field = sort.lstrip("+-")
        if field not in fields:
            raise BadRequestError(f"Campo de ordenação desconhecido: {field}")


def coerce_value(raw: Any, current: Any) -> Any:
    """
    Converte o valor do filtro para o tipo do valor armazenado.

    Raises:
        BadRequestError: Se a conversão falhar
    """
    if not isinstance(raw, str):
        return raw
    try:
        # bool antes de int: bool é subclasse de int
        if isinstance(current, bool):
            return raw.lower() in ("true", "1", "yes")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
    except ValueError:
        raise BadRequestError(f"Valor de filtro inválido: {raw!r}")
    return raw


def matches(record: Dict[str, Any], f: Filter) -> bool:
    current = record.get(f.path)

    if f.op == "hp":
        return str(current).startswith(str(f.value))

    if f.op == "in":
        raw = f.value.split(",") if isinstance(f.value, str) else f.value
        return any(current == coerce_value(v, current) for v in raw)

    value = coerce_value(f.value, current)

    if f.op == "eq":
        return current == value
    if current is None:
        return False
    if f.op == "gt":
        return current > value
    if f.op == "gte":
        return current >= value
    if f.op == "lt":
        return current < value
    if f.op == "lte":
        return current <= value

    raise BadRequestError(f"Operador de filtro desconhecido: {f.op}")


def apply_list_opts(records: Sequence[Dict[str, Any]], opts: ListOpts) -> List[Dict[str, Any]]:
    """
    Aplica filtros, ordenação, _after, _offset e _limit, nessa ordem.

    Args:
        records: Registros na ordem de inserção
        opts: Opções de listagem

    Returns:
        List[Dict[str, Any]]: Registros selecionados
    """
    result = [r for r in records if all(matches(r, f) for f in opts.filters)]

    # Ordenações estáveis aplicadas da menos para a mais significativa
    for sort in reversed(opts.sorts):
        field = sort.lstrip("+-")
        result.sort(key=lambda r: r.get(field), reverse=sort.startswith("-"))

    if opts.after is not None:
        ids = [r["id"] for r in result]
        if opts.after in ids:
            result = result[ids.index(opts.after) + 1:]
        else:
            result = []

    if opts.offset:
        result = result[opts.offset:]

    if opts.limit is not None:
        result = result[:opts.limit]

    return result


def apply_force_stream(opts: ListOpts, force: Optional[str]) -> StreamFormat:
    """
    Aplica o cabeçalho Force-Stream, que tem precedência sobre `_stream`.

    Returns:
        StreamFormat: Formato efetivo do stream (padrão: full)

    Raises:
        BadRequestError: Formato desconhecido
    """
    if force:
        try:
            opts.stream = StreamFormat(force.strip().lower())
        except ValueError:
            raise BadRequestError(f"Force-Stream inválido: {force!r}")
    return opts.stream or StreamFormat.FULL
