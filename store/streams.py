"""
Streams SSE do Store: acompanhamento de um registro ou de uma listagem.

O formato de cada evento é o do text/event-stream:

    event: <tipo>
    id: <etag>
    data: <json>

O `id` carrega o ETag do registro (ou da listagem), usado pelo cliente como
If-None-Match ao reconectar.
"""
import asyncio
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog

from common.errors import NotFoundError
from common.models import EventType, ListOpts, StreamFormat
from common.utils import compute_list_etag
from store.store import EVENT_DELETE, EVENT_RESYNC, ObjectStore, Subscription

log = structlog.get_logger(__name__)


def format_event(event: EventType, data: Any = None, event_id: Optional[str] = None) -> str:
    """Serializa um evento SSE."""
    lines = [f"event: {event.value}"]
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {json.dumps(data)}")
    return "\n".join(lines) + "\n\n"


class _BaseStream:
    """
    Base dos streams do servidor.

    `open()` só valida o pedido; a inscrição nas mudanças é feita quando o
    corpo da resposta começa a ser lido, e desfeita quando ele termina.
    """
    def __init__(self, store: ObjectStore, type_name: str, if_none_match: Optional[str],
                 heartbeat_interval: float):
        self.store = store
        self.type_name = type_name
        self.if_none_match = if_none_match
        self.heartbeat_interval = heartbeat_interval
        self.subscription: Optional[Subscription] = None
        self.last_sent = time.monotonic()

    def _sent(self, raw: str) -> str:
        """Marca o envio de um evento; o heartbeat conta a partir daqui."""
        self.last_sent = time.monotonic()
        return raw

    async def _next_change(self):
        """
        Espera a próxima mudança do tipo, no máximo até o próximo heartbeat.

        O prazo conta desde o último evento enviado, não desde a última
        mudança recebida: mudanças filtradas não adiam o heartbeat.

        Returns:
            (evento, registro), ou None se é hora de um heartbeat.
        """
        remaining = self.heartbeat_interval - (time.monotonic() - self.last_sent)
        if remaining <= 0:
            return None
        try:
            return await asyncio.wait_for(self.subscription.queue.get(), timeout=remaining)
        except asyncio.TimeoutError:
            return None

    def _heartbeat(self) -> str:
        return self._sent(format_event(EventType.HEARTBEAT))

    def close(self):
        if self.subscription is not None:
            self.store.unsubscribe(self.subscription)
            self.subscription = None

    async def aclose(self):
        self.close()


class RecordStream(_BaseStream):
    """
    Stream de um único registro: initial (ou notModified), update a cada
    escrita, delete quando o registro é removido.
    """
    def __init__(self, store: ObjectStore, type_name: str, record_id: str,
                 if_none_match: Optional[str] = None, heartbeat_interval: float = 5.0):
        super().__init__(store, type_name, if_none_match, heartbeat_interval)
        self.record_id = record_id
        self.record: Optional[Dict[str, Any]] = None

    async def open(self):
        """
        Lê o estado inicial, antes de a resposta começar.

        Raises:
            NotFoundError: Registro inexistente.
        """
        self.record = await self.store.get(self.type_name, self.record_id)

    async def _reload(self) -> Optional[Dict[str, Any]]:
        """Relê o registro; None se ele foi removido."""
        try:
            return await self.store.get(self.type_name, self.record_id)
        except NotFoundError:
            return None

    async def events(self) -> AsyncIterator[str]:
        self.subscription = self.store.subscribe(self.type_name)
        try:
            # Escritas entre open() e a inscrição já estão nesta leitura
            current = await self._reload()
            if current is None:
                yield self._sent(format_event(EventType.DELETE, self.record, self.record["etag"]))
                return
            self.record = current

            if self.if_none_match == self.record["etag"]:
                yield self._sent(format_event(EventType.NOT_MODIFIED, None, self.record["etag"]))
            else:
                yield self._sent(format_event(EventType.INITIAL, self.record, self.record["etag"]))

            while True:
                change = await self._next_change()
                if change is None:
                    yield self._heartbeat()
                    continue

                event, record = change
                if event == EVENT_RESYNC:
                    # Fila transbordou: o estado atual substitui as mudanças perdidas
                    record = await self._reload()
                    if record is None:
                        event, record = EVENT_DELETE, self.record
                elif record["id"] != self.record_id:
                    continue

                if event == EVENT_DELETE:
                    yield self._sent(format_event(EventType.DELETE, record, record["etag"]))
                    log.info("Record stream ended by delete", type=self.type_name, id=self.record_id)
                    return

                if record["etag"] == self.record["etag"]:
                    continue

                self.record = record
                yield self._sent(format_event(EventType.UPDATE, record, record["etag"]))
        finally:
            self.close()


class ListStream(_BaseStream):
    """
    Stream de uma listagem. Em formato "full" cada mudança reenvia a lista
    inteira; em "diff" são enviados add/update/remove seguidos de sync com a
    ordem dos ids. Mudanças que não alteram o resultado não geram eventos.
    """
    def __init__(self, store: ObjectStore, type_name: str, opts: Optional[ListOpts] = None,
                 if_none_match: Optional[str] = None, heartbeat_interval: float = 5.0):
        super().__init__(store, type_name, if_none_match, heartbeat_interval)
        self.opts = opts or ListOpts()
        self.format = self.opts.stream or StreamFormat.FULL
        self.items: List[Dict[str, Any]] = []
        self.etag = ""

    async def _query(self):
        self.items = await self.store.list(self.type_name, self.opts)
        self.etag = compute_list_etag(item["etag"] for item in self.items)

    async def open(self):
        """
        Executa a consulta inicial, antes de a resposta começar.

        Raises:
            NotFoundError: Tipo inexistente.
            BadRequestError: Opções de listagem inválidas.
        """
        await self._query()

    def _full_events(self) -> List[str]:
        return [format_event(EventType.LIST, self.items, self.etag)]

    def _diff_events(self, old: List[Dict[str, Any]]) -> List[str]:
        old_by_id = {item["id"]: item for item in old}
        new_ids = {item["id"] for item in self.items}
        events = []

        for item in old:
            if item["id"] not in new_ids:
                events.append(format_event(EventType.REMOVE, {"id": item["id"]}, item["etag"]))

        for item in self.items:
            previous = old_by_id.get(item["id"])
            if previous is None:
                events.append(format_event(EventType.ADD, item, item["etag"]))
            elif previous["etag"] != item["etag"]:
                events.append(format_event(EventType.UPDATE, item, item["etag"]))

        events.append(format_event(EventType.SYNC, [item["id"] for item in self.items], self.etag))
        return events

    def _changes(self, old: List[Dict[str, Any]]) -> List[str]:
        if self.format == StreamFormat.DIFF:
            return self._diff_events(old)
        return self._full_events()

    def _drain(self):
        """Descarta mudanças acumuladas; a consulta seguinte já as reflete."""
        while not self.subscription.queue.empty():
            self.subscription.queue.get_nowait()

    async def events(self) -> AsyncIterator[str]:
        self.subscription = self.store.subscribe(self.type_name)
        try:
            await self._query()

            if self.if_none_match == self.etag:
                yield self._sent(format_event(EventType.NOT_MODIFIED, None, self.etag))
            else:
                for event in self._changes([]):
                    yield self._sent(event)

            while True:
                change = await self._next_change()
                if change is None:
                    yield self._heartbeat()
                    continue

                self._drain()
                old, etag = self.items, self.etag
                await self._query()
                if self.etag == etag:
                    continue

                for event in self._changes(old):
                    yield self._sent(event)
        finally:
            self.close()
