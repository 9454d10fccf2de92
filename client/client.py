import asyncio
import json
import logging
import time
from typing import Any, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar, Union

import httpx
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from client.config import MAX_RETRIES, REQUEST_TIMEOUT, RETRY_BACKOFF_BASE, RETRY_BACKOFF_MAX, STORE_URL
from client.sse import iter_sse
from common.communication import HttpClient
from common.errors import BadRequestError, NotFoundError, StoreError, error_for_status
from common.models import Filter, ListOpts, TestTypeRequest, TestTypeResponse
from common.utils import compute_list_etag

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

Body = Union[BaseModel, Dict[str, Any]]
Prev = Union[BaseModel, Dict[str, Any], None]

EVENT_STREAM = "text/event-stream"
TEST_TYPE = "testtype"


def to_query_params(opts: Optional[ListOpts]) -> List[Tuple[str, str]]:
    """
    Converte ListOpts nos parâmetros de query string entendidos pelo Store.

    Filtros viram `campo=valor` (eq) ou `campo[op]=valor`; listas (op "in")
    são unidas por vírgula.
    """
    params: List[Tuple[str, str]] = []
    if opts is None:
        return params

    for f in opts.filters:
        value = f.value
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            value = "true" if value else "false"
        key = f.path if f.op == "eq" else f"{f.path}[{f.op}]"
        params.append((key, str(value)))

    for sort in opts.sorts:
        params.append(("_sort", sort))

    if opts.limit is not None:
        params.append(("_limit", str(opts.limit)))
    if opts.offset is not None:
        params.append(("_offset", str(opts.offset)))
    if opts.after is not None:
        params.append(("_after", opts.after))
    if opts.stream is not None:
        params.append(("_stream", opts.stream.value))

    return params


def _body(obj: Body) -> Dict[str, Any]:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", exclude_unset=True)
    return dict(obj)


def _etag_of(prev: Prev) -> Optional[str]:
    """
    Extrai o ETag de um snapshot `prev`.

    Raises:
        BadRequestError: `prev` informado sem ETag; a escrita seria
            incondicional
    """
    if prev is None:
        return None
    if isinstance(prev, BaseModel):
        etag = getattr(prev, "etag", None)
    else:
        etag = prev.get("etag")
    if not etag:
        raise BadRequestError(f"prev sem etag: {prev!r}")
    return etag


def _list_etag_of(prev: Optional[Sequence[Any]]) -> Optional[str]:
    if prev is None:
        return None
    return compute_list_etag(_etag_of(item) for item in prev)


def _raise_for_status(response: httpx.Response):
    """Converte respostas de erro do Store em StoreError."""
    if response.status_code < 400:
        return

    try:
        message = response.json().get("error") or response.text
    except (ValueError, AttributeError):
        message = response.text

    raise error_for_status(response.status_code, message or f"HTTP {response.status_code}")


class Client:
    """
    Cliente assíncrono do Store.

    As escritas aceitam `prev`, o snapshot de uma leitura anterior: o Store
    rejeita a escrita (PreconditionFailedError) se o registro mudou desde
    então.
    """

    def __init__(self, base_url: str = STORE_URL, timeout: float = REQUEST_TIMEOUT,
                 max_retries: int = MAX_RETRIES, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Inicializa o cliente.

        Args:
            base_url: URL base do Store
            timeout: Timeout padrão das requisições em segundos
            max_retries: Tentativas para leituras e reconexões de stream
            transport: Transporte httpx alternativo (testes)
        """
        self.http = HttpClient(base_url, timeout=timeout, transport=transport)
        self.max_retries = max(1, max_retries)

        logger.debug(f"Cliente inicializado para {base_url}")

    async def close(self):
        await self.http.close()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def set_header(self, name: str, value: str) -> "Client":
        """Define um cabeçalho enviado em todas as requisições."""
        self.http.headers[name] = value
        return self

    def set_debug(self, debug: bool) -> "Client":
        """Liga ou desliga o log das requisições."""
        self.http.debug = debug
        return self

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=RETRY_BACKOFF_BASE, max=RETRY_BACKOFF_MAX),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True
        )

    async def _send(self, method: str, path: str, json: Any = None, params: Any = None,
                    headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """
        Envia uma requisição e levanta StoreError para status de erro.

        GET é repetido em falhas de transporte; escritas não são repetidas.
        """
        if method != "GET":
            response = await self.http.request(method, path, json=json, params=params, headers=headers)
        else:
            async for attempt in self._retrying():
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(f"Tentativa {attempt.retry_state.attempt_number} de GET {path}")
                    response = await self.http.request(method, path, params=params, headers=headers)

        _raise_for_status(response)
        return response

    # Operações genéricas

    async def create(self, type_name: str, obj: Body, model: Type[T]) -> T:
        """Cria um registro do tipo `type_name`."""
        response = await self._send("POST", f"/{type_name}", json=_body(obj))
        return model.model_validate(response.json())

    async def get(self, type_name: str, record_id: str, model: Type[T], prev: Prev = None) -> T:
        """
        Lê um registro.

        Com `prev`, a leitura é condicional: se o registro não mudou, o
        próprio `prev` é devolvido.

        Raises:
            NotFoundError: Registro inexistente
        """
        etag = _etag_of(prev)
        headers = {"If-None-Match": etag} if etag else None

        response = await self._send("GET", f"/{type_name}/{record_id}", headers=headers)
        if response.status_code == 304:
            return prev if isinstance(prev, model) else model.model_validate(prev)
        return model.model_validate(response.json())

    async def list(self, type_name: str, model: Type[T], opts: Optional[ListOpts] = None) -> List[T]:
        """
        Lista registros.

        Com `opts.prev`, a leitura é condicional: se o resultado não mudou,
        `opts.prev` é devolvido.
        """
        etag = _list_etag_of(opts.prev if opts else None)
        headers = {"If-None-Match": etag} if etag else None

        response = await self._send("GET", f"/{type_name}", params=to_query_params(opts), headers=headers)
        if response.status_code == 304:
            return [item if isinstance(item, model) else model.model_validate(item) for item in opts.prev]
        return [model.model_validate(item) for item in response.json()]

    async def find(self, type_name: str, short_id: str, model: Type[T]) -> T:
        """
        Busca o registro cujo id começa com `short_id`.

        Raises:
            NotFoundError: Nenhum ou mais de um registro corresponde
        """
        opts = ListOpts(filters=[Filter(path="id", op="hp", value=short_id)])
        found = await self.list(type_name, model, opts)
        if len(found) != 1:
            raise NotFoundError(f"{type_name} com prefixo {short_id}: {len(found)} registros encontrados")
        return found[0]

    async def replace(self, type_name: str, record_id: str, obj: Body, model: Type[T], prev: Prev = None) -> T:
        """
        Substitui um registro; campos omitidos voltam ao padrão.

        Raises:
            NotFoundError: Registro inexistente
            PreconditionFailedError: O registro mudou desde `prev`
        """
        etag = _etag_of(prev)
        headers = {"If-Match": etag} if etag else None
        response = await self._send("PUT", f"/{type_name}/{record_id}", json=_body(obj), headers=headers)
        return model.model_validate(response.json())

    async def update(self, type_name: str, record_id: str, obj: Body, model: Type[T], prev: Prev = None) -> T:
        """
        Atualiza apenas os campos informados.

        Raises:
            NotFoundError: Registro inexistente
            PreconditionFailedError: O registro mudou desde `prev`
        """
        etag = _etag_of(prev)
        headers = {"If-Match": etag} if etag else None
        response = await self._send("PATCH", f"/{type_name}/{record_id}", json=_body(obj), headers=headers)
        return model.model_validate(response.json())

    async def delete(self, type_name: str, record_id: str, prev: Prev = None):
        """
        Remove um registro.

        Raises:
            NotFoundError: Registro inexistente
            PreconditionFailedError: O registro mudou desde `prev`
        """
        etag = _etag_of(prev)
        headers = {"If-Match": etag} if etag else None
        await self._send("DELETE", f"/{type_name}/{record_id}", headers=headers)

    async def stream_get(self, type_name: str, record_id: str, model: Type[T], prev: Prev = None) -> "GetStream[T]":
        """
        Abre um stream do registro.

        Raises:
            NotFoundError: Registro inexistente
        """
        stream = GetStream(self, f"/{type_name}/{record_id}", model, prev)
        await stream.open()
        return stream

    async def stream_list(self, type_name: str, model: Type[T], opts: Optional[ListOpts] = None) -> "ListStream[T]":
        """Abre um stream de listagem."""
        stream = ListStream(self, f"/{type_name}", model, opts)
        await stream.open()
        return stream

    async def debug_info(self) -> Dict[str, Any]:
        response = await self._send("GET", "/_debug")
        return response.json()

    async def openapi(self) -> Dict[str, Any]:
        response = await self._send("GET", "/openapi.json")
        return response.json()

    # TestType

    async def create_test_type(self, obj: Body) -> TestTypeResponse:
        return await self.create(TEST_TYPE, obj, TestTypeResponse)

    async def get_test_type(self, record_id: str, prev: Prev = None) -> TestTypeResponse:
        return await self.get(TEST_TYPE, record_id, TestTypeResponse, prev)

    async def list_test_type(self, opts: Optional[ListOpts] = None) -> List[TestTypeResponse]:
        return await self.list(TEST_TYPE, TestTypeResponse, opts)

    async def find_test_type(self, short_id: str) -> TestTypeResponse:
        return await self.find(TEST_TYPE, short_id, TestTypeResponse)

    async def replace_test_type(self, record_id: str, obj: Union[TestTypeRequest, Dict[str, Any]],
                                prev: Prev = None) -> TestTypeResponse:
        return await self.replace(TEST_TYPE, record_id, obj, TestTypeResponse, prev)

    async def update_test_type(self, record_id: str, obj: Union[TestTypeRequest, Dict[str, Any]],
                               prev: Prev = None) -> TestTypeResponse:
        return await self.update(TEST_TYPE, record_id, obj, TestTypeResponse, prev)

    async def delete_test_type(self, record_id: str, prev: Prev = None):
        await self.delete(TEST_TYPE, record_id, prev)

    async def stream_get_test_type(self, record_id: str, prev: Prev = None) -> "GetStream[TestTypeResponse]":
        return await self.stream_get(TEST_TYPE, record_id, TestTypeResponse, prev)

    async def stream_list_test_type(self, opts: Optional[ListOpts] = None) -> "ListStream[TestTypeResponse]":
        return await self.stream_list(TEST_TYPE, TestTypeResponse, opts)


class _Stream(Generic[T]):
    """
    Base dos streams SSE do cliente.

    Uma task lê os eventos e entrega os valores numa fila; `read()` devolve o
    próximo valor, ou None quando o stream terminou (veja `error`). Quedas de
    conexão levam a uma reconexão com If-None-Match do último ETag recebido.
    """

    # Eventos cujo id é o ETag usado ao reconectar
    etag_events: Tuple[str, ...] = ()

    def __init__(self, client: Client, path: str, model: Type[T], params: Any = None):
        self.client = client
        self.path = path
        self.model = model
        self.params = params

        self.error: Optional[Exception] = None
        self.last_event_received: float = 0.0

        self._etag: Optional[str] = None
        self._emitted = False
        self._reconnects = 0
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def _connect(self) -> httpx.Response:
        headers = {"Accept": EVENT_STREAM}
        if self._etag:
            headers["If-None-Match"] = self._etag

        response = await self.client.http.open_stream("GET", self.path, params=self.params, headers=headers)
        if response.status_code != 200:
            try:
                await response.aread()
                _raise_for_status(response)
                raise StoreError(f"Resposta inesperada ao abrir stream: HTTP {response.status_code}",
                                 status_code=response.status_code)
            finally:
                await response.aclose()
        return response

    async def _reconnect(self) -> httpx.Response:
        async for attempt in self.client._retrying():
            with attempt:
                logger.info(f"Reconectando stream {self.path} (tentativa {attempt.retry_state.attempt_number})")
                return await self._connect()

    async def open(self):
        """
        Abre a primeira conexão e inicia a leitura em background.

        Raises:
            StoreError: Se o Store recusar o stream
        """
        response = await self._connect()
        self._task = asyncio.create_task(self._run(response))

    def _emit(self, value: Any):
        self._emitted = True
        self._queue.put_nowait(value)

    def _handle(self, event: str, data: Any) -> bool:
        """
        Processa um evento.

        Returns:
            False se o stream deve terminar.
        """
        raise NotImplementedError

    async def _consume(self, response: httpx.Response) -> bool:
        """
        Lê eventos até a conexão acabar.

        Returns:
            True se o stream terminou por um evento final; False se a conexão caiu.
        """
        received = False
        try:
            async for sse in iter_sse(response.aiter_lines()):
                received = True
                self.last_event_received = time.time()
                if sse.id and sse.event in self.etag_events:
                    self._etag = sse.id
                if not self._handle(sse.event, json.loads(sse.data)):
                    return True
        except httpx.TransportError as e:
            logger.warning(f"Conexão do stream {self.path} caiu: {e}")
        finally:
            await response.aclose()

        self._reconnects = 0 if received else self._reconnects + 1
        if self._reconnects >= self.client.max_retries:
            raise StoreError(f"Stream {self.path} encerrado {self._reconnects} vezes sem eventos")
        return False

    async def _run(self, response: httpx.Response):
        try:
            while not await self._consume(response):
                response = await self._reconnect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Stream {self.path} encerrado com erro: {e}")
            if self.error is None:
                self.error = e
        finally:
            self._queue.put_nowait(None)

    async def read(self) -> Optional[Any]:
        """
        Espera o próximo valor do stream.

        Returns:
            O valor, ou None se o stream terminou.
        """
        value = await self._queue.get()
        if value is None:
            # Mantém o marcador para leituras futuras
            self._queue.put_nowait(None)
        return value

    def read_nowait(self) -> Optional[Any]:
        """
        Devolve o próximo valor já recebido, sem esperar.

        Raises:
            asyncio.QueueEmpty: Nenhum valor disponível
        """
        value = self._queue.get_nowait()
        if value is None:
            self._queue.put_nowait(None)
        return value

    def __aiter__(self):
        return self

    async def __anext__(self):
        value = await self.read()
        if value is None:
            raise StopAsyncIteration
        return value

    async def close(self):
        """Encerra o stream e a conexão."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.close()


class GetStream(_Stream[T]):
    """Stream de um registro: cada valor é a versão mais recente."""

    etag_events = ("initial", "update", "notModified")

    def __init__(self, client: Client, path: str, model: Type[T], prev: Prev = None):
        super().__init__(client, path, model)
        self.prev = prev
        self._etag = _etag_of(prev)

    def _handle(self, event: str, data: Any) -> bool:
        if event in ("initial", "update"):
            self.prev = self.model.model_validate(data)
            self._emit(self.prev)
        elif event == "notModified":
            if not self._emitted and self.prev is not None:
                self._emit(self.prev if isinstance(self.prev, self.model) else self.model.model_validate(self.prev))
        elif event == "delete":
            self.error = NotFoundError(f"{self.path} removido")
            return False
        return True


class ListStream(_Stream[T]):
    """Stream de listagem: cada valor é a lista completa mais recente."""

    etag_events = ("list", "sync", "notModified")

    def __init__(self, client: Client, path: str, model: Type[T], opts: Optional[ListOpts] = None):
        opts = opts or ListOpts()
        super().__init__(client, path, model, to_query_params(opts))
        self.prev: Optional[List[T]] = None
        self._by_id: Dict[str, T] = {}
        if opts.prev is not None:
            self.prev = [item if isinstance(item, model) else model.model_validate(item) for item in opts.prev]
            self._by_id = {item.id: item for item in self.prev}
        self._etag = _list_etag_of(self.prev)

    def _handle(self, event: str, data: Any) -> bool:
        if event == "list":
            self.prev = [self.model.model_validate(item) for item in data]
            self._by_id = {item.id: item for item in self.prev}
            self._emit(list(self.prev))
        elif event == "notModified":
            if not self._emitted and self.prev is not None:
                self._emit(list(self.prev))
        elif event in ("add", "update"):
            item = self.model.model_validate(data)
            self._by_id[item.id] = item
        elif event == "remove":
            self._by_id.pop(data["id"], None)
        elif event == "sync":
            self.prev = [self._by_id[record_id] for record_id in data if record_id in self._by_id]
            self._by_id = {item.id: item for item in self.prev}
            self._emit(list(self.prev))
        return True


# Nome curto usado nos exemplos e scripts
StoreClient = Client
