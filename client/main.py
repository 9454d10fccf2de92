"""
Linha de comando do cliente do Store.

Exemplos:
    python -m client.main create testtype '{"text": "foo", "num": 5}'
    python -m client.main get testtype <id>
    python -m client.main replace testtype <id> '{"text": "bar"}' --prev-etag <etag>
    python -m client.main list testtype --filter num[gt]=3 --sort -num --limit 10
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from client.client import Client
from client.config import STORE_URL
from common.errors import StoreError
from common.logging import setup_logging
from common.models import Filter, ListOpts, StreamFormat
from common.utils import get_debug_mode, parse_json

logger = logging.getLogger(__name__)


class AnyRecord(BaseModel):
    """Registro de qualquer tipo, como o servidor o devolve."""
    model_config = ConfigDict(extra="allow")

    id: str
    etag: str
    generation: int = 0


def parse_filter(raw: str) -> Filter:
    """
    Converte `campo=valor` ou `campo[op]=valor` em Filter.

    Raises:
        ValueError: Se não houver "="
    """
    key, sep, value = raw.partition("=")
    if not sep:
        raise ValueError(f"Filtro inválido (esperado campo=valor): {raw}")
    if key.endswith("]") and "[" in key:
        path, _, op = key[:-1].partition("[")
        return Filter(path=path, op=op, value=value)
    return Filter(path=key, value=value)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Cliente do Store de objetos versionados")
    parser.add_argument("--url", type=str, default=STORE_URL, help="URL base do Store")
    parser.add_argument("--debug", action="store_true", help="Habilita logs de depuração")

    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Cria um registro")
    create.add_argument("type")
    create.add_argument("payload", help="Objeto JSON")

    get = commands.add_parser("get", help="Lê um registro")
    get.add_argument("type")
    get.add_argument("id")

    find = commands.add_parser("find", help="Busca um registro pelo prefixo do id")
    find.add_argument("type")
    find.add_argument("short_id")

    list_ = commands.add_parser("list", help="Lista registros")
    list_.add_argument("type")
    list_.add_argument("--filter", action="append", default=[], help="campo=valor ou campo[op]=valor")
    list_.add_argument("--sort", action="append", default=[], help="campo ou -campo")
    list_.add_argument("--limit", type=int)
    list_.add_argument("--offset", type=int)
    list_.add_argument("--after", type=str)

    for name, help_text in (("replace", "Substitui um registro"), ("update", "Atualiza campos de um registro")):
        write = commands.add_parser(name, help=help_text)
        write.add_argument("type")
        write.add_argument("id")
        write.add_argument("payload", help="Objeto JSON")
        write.add_argument("--prev-etag", type=str, help="Só escreve se o ETag atual for este")

    delete = commands.add_parser("delete", help="Remove um registro")
    delete.add_argument("type")
    delete.add_argument("id")
    delete.add_argument("--prev-etag", type=str, help="Só remove se o ETag atual for este")

    watch = commands.add_parser("watch", help="Acompanha um registro ou uma listagem")
    watch.add_argument("type")
    watch.add_argument("id", nargs="?")
    watch.add_argument("--diff", action="store_true", help="Stream de listagem em formato diff")

    commands.add_parser("debug", help="Mostra o estado do Store")

    return parser


def _payload(raw: str) -> Dict[str, Any]:
    data = parse_json(raw)
    if not isinstance(data, dict):
        raise ValueError("O payload deve ser um objeto JSON")
    return data


def _prev(etag: Optional[str]) -> Optional[Dict[str, str]]:
    return {"etag": etag} if etag else None


def _dump(value: Any):
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    elif isinstance(value, list):
        value = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in value]
    print(json.dumps(value, indent=2, ensure_ascii=False))


async def run(args: argparse.Namespace) -> int:
    """
    Executa o comando escolhido.

    Returns:
        Código de saída do processo.
    """
    async with Client(args.url) as client:
        client.set_debug(args.debug)

        try:
            if args.command == "create":
                _dump(await client.create(args.type, _payload(args.payload), AnyRecord))
            elif args.command == "get":
                _dump(await client.get(args.type, args.id, AnyRecord))
            elif args.command == "find":
                _dump(await client.find(args.type, args.short_id, AnyRecord))
            elif args.command == "list":
                opts = ListOpts(
                    filters=[parse_filter(raw) for raw in args.filter],
                    sorts=args.sort,
                    limit=args.limit,
                    offset=args.offset,
                    after=args.after
                )
                _dump(await client.list(args.type, AnyRecord, opts))
            elif args.command == "replace":
                _dump(await client.replace(args.type, args.id, _payload(args.payload), AnyRecord,
                                           prev=_prev(args.prev_etag)))
            elif args.command == "update":
                _dump(await client.update(args.type, args.id, _payload(args.payload), AnyRecord,
                                          prev=_prev(args.prev_etag)))
            elif args.command == "delete":
                await client.delete(args.type, args.id, prev=_prev(args.prev_etag))
            elif args.command == "watch":
                if args.id:
                    stream = await client.stream_get(args.type, args.id, AnyRecord)
                else:
                    opts = ListOpts(stream=StreamFormat.DIFF if args.diff else StreamFormat.FULL)
                    stream = await client.stream_list(args.type, AnyRecord, opts)
                async with stream:
                    async for value in stream:
                        _dump(value)
                if stream.error is not None:
                    raise stream.error
            elif args.command == "debug":
                _dump(await client.debug_info())
        except (StoreError, ValueError) as e:
            logger.error(f"{args.command} falhou: {e}")
            print(f"erro: {e}", file=sys.stderr)
            return 1

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging("client", debug=args.debug or get_debug_mode())
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
