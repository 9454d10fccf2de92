"""
Implementação do componente Store.
"""
import asyncio
import time
from typing import Any, Dict, List, Optional, Set, Tuple, Type

import structlog
from pydantic import BaseModel, ValidationError

from common.errors import BadRequestError, NotFoundError, PreconditionFailedError
from common.metrics import store_metrics, timed
from common.models import METADATA_FIELDS, ListOpts
from common.utils import compute_etag, current_timestamp, generate_id
from store.persistence import RecordPersistence
from store.query import apply_list_opts, validate_list_opts

log = structlog.get_logger(__name__)

# Eventos publicados para os streams
EVENT_UPDATE = "update"
EVENT_DELETE = "delete"
# Mudanças perdidas por fila cheia; o stream deve reler o estado
EVENT_RESYNC = "resync"

# Mudanças pendentes por stream
SUBSCRIPTION_QUEUE_SIZE = 1000


class Subscription:
    """
    Inscrição de um stream nas mudanças de um tipo.
    Cada mudança chega na fila como (evento, registro). Se a fila enche, as
    pendentes são trocadas por um único EVENT_RESYNC.
    """
    def __init__(self, type_name: str, maxsize: int = SUBSCRIPTION_QUEUE_SIZE):
        self.type_name = type_name
        self.queue: "asyncio.Queue[Tuple[str, Dict[str, Any]]]" = asyncio.Queue(maxsize=maxsize)

    def put(self, event: str, record: Dict[str, Any]):
        try:
            self.queue.put_nowait((event, record))
        except asyncio.QueueFull:
            while not self.queue.empty():
                self.queue.get_nowait()
            self.queue.put_nowait((EVENT_RESYNC, {}))
            log.warning("Subscription queue overflow", type=self.type_name)


class ObjectStore:
    """
    Armazena registros por tipo e aplica o controle de concorrência otimista.

    Toda escrita roda sob o lock do tipo: a comparação do ETag de `prev`
    (If-Match) e a escrita formam uma única operação atômica.
    """
    def __init__(self, persistence: RecordPersistence, node_id: int = 1,
                 queue_size: int = SUBSCRIPTION_QUEUE_SIZE):
        """
        Inicializa o Store.

        Args:
            persistence: Backend de persistência.
            node_id: ID deste nó (apenas informativo).
            queue_size: Tamanho máximo da fila de cada stream.
        """
        self.persistence = persistence
        self.node_id = node_id
        self.queue_size = queue_size

        self.types: Dict[str, Type[BaseModel]] = {}  # {type_name: modelo pydantic}
        self.records: Dict[str, Dict[str, Dict[str, Any]]] = {}  # {type_name: {id: registro}}
        self.locks: Dict[str, asyncio.Lock] = {}
        self.subscribers: Dict[str, Set[Subscription]] = {}

        self.start_time = time.time()

    def register_type(self, type_name: str, model: Type[BaseModel]):
        """
        Registra um tipo de recurso e carrega seus registros persistidos.

        Args:
            type_name: Nome do tipo na URL (ex.: "testtype").
            model: Modelo pydantic com os campos do tipo.
        """
        type_name = type_name.lower()
        self.types[type_name] = model
        self.records[type_name] = {
            record["id"]: record for record in self.persistence.load_records(type_name)
        }
        self.locks[type_name] = asyncio.Lock()
        self.subscribers[type_name] = set()

        store_metrics["active_records"].labels(type=type_name).set(len(self.records[type_name]))
        log.info("Type registered", type=type_name, records=len(self.records[type_name]))

    def _model(self, type_name: str) -> Type[BaseModel]:
        if type_name not in self.types:
            raise NotFoundError(f"Tipo desconhecido: {type_name}")
        return self.types[type_name]

    def fields(self, type_name: str) -> Set[str]:
        """Campos aceitos em filtros e ordenações (modelo + metadados)."""
        return set(self._model(type_name).model_fields) | set(METADATA_FIELDS)

    def _validate(self, type_name: str, data: Any) -> Dict[str, Any]:
        """
        Valida o corpo de uma escrita contra o modelo do tipo.

        Returns:
            Campos do tipo, com valores padrão preenchidos.

        Raises:
            BadRequestError: Corpo inválido ou com metadados.
        """
        model = self._model(type_name)

        if not isinstance(data, dict):
            raise BadRequestError("O corpo deve ser um objeto JSON")

        for field in METADATA_FIELDS:
            if field in data:
                raise BadRequestError(f"Campo controlado pelo servidor: {field}")

        try:
            return model.model_validate(data).model_dump(mode="json")
        except ValidationError as e:
            raise BadRequestError(f"Registro inválido para {type_name}: {e}")

    def _current(self, type_name: str, record_id: str) -> Dict[str, Any]:
        self._model(type_name)
        record = self.records[type_name].get(record_id)
        if record is None:
            raise NotFoundError(f"{type_name} {record_id} não encontrado")
        return record

    def _check_prev(self, type_name: str, operation: str, record: Dict[str, Any], if_match: Optional[str]):
        if if_match is not None and if_match != record["etag"]:
            store_metrics["precondition_failures"].labels(type=type_name, operation=operation).inc()
            log.warning("Precondition failed",
                        type=type_name,
                        id=record["id"],
                        operation=operation,
                        expected=if_match,
                        current=record["etag"])
            raise PreconditionFailedError(
                f"{type_name} {record['id']} foi modificado: ETag {if_match} != {record['etag']}"
            )

    def _publish(self, type_name: str, event: str, record: Dict[str, Any]):
        for subscription in self.subscribers.get(type_name, ()):
            subscription.put(event, dict(record))

    async def _store(self, type_name: str, record_id: str, generation: int, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Monta o registro com metadados, persiste e publica."""
        record = {"id": record_id, "generation": generation, **fields}
        record["etag"] = compute_etag(record)

        await self.persistence.save_record(type_name, record)
        self.records[type_name][record_id] = record

        store_metrics["active_records"].labels(type=type_name).set(len(self.records[type_name]))
        self._publish(type_name, EVENT_UPDATE, record)
        return dict(record)

    @timed("create")
    async def create(self, type_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Cria um registro.

        Args:
            type_name: Nome do tipo.
            data: Campos do registro.

        Returns:
            Registro criado, com id, etag e generation.
        """
        fields = self._validate(type_name, data)

        async with self.locks[type_name]:
            record = await self._store(type_name, generate_id(), 1, fields)

        log.info("Record created", type=type_name, id=record["id"])
        return record

    @timed("get")
    async def get(self, type_name: str, record_id: str) -> Dict[str, Any]:
        """
        Lê o estado atual de um registro.

        Raises:
            NotFoundError: Tipo ou registro inexistente.
        """
        return dict(self._current(type_name, record_id))

    @timed("list")
    async def list(self, type_name: str, opts: Optional[ListOpts] = None) -> List[Dict[str, Any]]:
        """
        Lista registros de um tipo aplicando filtros, ordenação e paginação.

        Raises:
            BadRequestError: Opções inválidas.
        """
        opts = opts or ListOpts()
        validate_list_opts(opts, self.fields(type_name))
        records = apply_list_opts(list(self.records[type_name].values()), opts)
        return [dict(record) for record in records]

    @timed("replace")
    async def replace(self, type_name: str, record_id: str, data: Dict[str, Any],
                      if_match: Optional[str] = None) -> Dict[str, Any]:
        """
        Substitui todos os campos de um registro; campos ausentes voltam ao
        valor padrão.

        Args:
            type_name: Nome do tipo.
            record_id: ID do registro.
            data: Novos campos.
            if_match: ETag do snapshot `prev`; None para substituição incondicional.

        Raises:
            NotFoundError: Registro inexistente.
            PreconditionFailedError: O registro mudou desde o snapshot.
        """
        fields = self._validate(type_name, data)

        async with self.locks[type_name]:
            current = self._current(type_name, record_id)
            self._check_prev(type_name, "replace", current, if_match)
            record = await self._store(type_name, record_id, current["generation"] + 1, fields)

        log.info("Record replaced", type=type_name, id=record_id, generation=record["generation"])
        return record

    @timed("update")
    async def update(self, type_name: str, record_id: str, data: Dict[str, Any],
                     if_match: Optional[str] = None) -> Dict[str, Any]:
        """
        Atualiza apenas os campos informados (merge patch).

        Raises:
            NotFoundError: Registro inexistente.
            PreconditionFailedError: O registro mudou desde o snapshot.
        """
        model = self._model(type_name)
        if not isinstance(data, dict):
            raise BadRequestError("O corpo deve ser um objeto JSON")

        async with self.locks[type_name]:
            current = self._current(type_name, record_id)
            self._check_prev(type_name, "update", current, if_match)

            merged = {name: current[name] for name in model.model_fields if name in current}
            merged.update(data)
            fields = self._validate(type_name, merged)

            record = await self._store(type_name, record_id, current["generation"] + 1, fields)

        log.info("Record updated", type=type_name, id=record_id, generation=record["generation"])
        return record

    @timed("delete")
    async def delete(self, type_name: str, record_id: str, if_match: Optional[str] = None):
        """
        Remove um registro.

        Raises:
            NotFoundError: Registro inexistente.
            PreconditionFailedError: O registro mudou desde o snapshot.
        """
        self._model(type_name)

        async with self.locks[type_name]:
            current = self._current(type_name, record_id)
            self._check_prev(type_name, "delete", current, if_match)

            await self.persistence.delete_record(type_name, record_id)
            del self.records[type_name][record_id]

            store_metrics["active_records"].labels(type=type_name).set(len(self.records[type_name]))
            self._publish(type_name, EVENT_DELETE, current)

        log.info("Record deleted", type=type_name, id=record_id)

    def subscribe(self, type_name: str) -> Subscription:
        """Inscreve um stream nas mudanças de um tipo."""
        self._model(type_name)
        subscription = Subscription(type_name, self.queue_size)
        self.subscribers[type_name].add(subscription)
        store_metrics["active_streams"].labels(type=type_name).inc()
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscribers = self.subscribers.get(subscription.type_name, set())
        if subscription in subscribers:
            subscribers.discard(subscription)
            store_metrics["active_streams"].labels(type=subscription.type_name).dec()

    def get_status(self) -> Dict[str, Any]:
        """
        Obtém o status atual do Store.

        Returns:
            Status do Store.
        """
        return {
            "node_id": self.node_id,
            "types": {name: len(records) for name, records in self.records.items()},
            "active_streams": sum(len(subs) for subs in self.subscribers.values()),
            "uptime_seconds": time.time() - self.start_time,
            "timestamp": current_timestamp()
        }

    def close(self):
        self.persistence.close()
        log.info("Store closed", node_id=self.node_id)
