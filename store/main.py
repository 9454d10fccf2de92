"""
Ponto de entrada da aplicação FastAPI para o componente Store.
"""
from typing import Any, Dict, Optional, Type

import structlog
import uvicorn
from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from common.errors import BadRequestError, StoreError
from common.logging import setup_logging
from common.models import DebugInfo, HealthResponse, TestType
from common.utils import compute_list_etag, parse_json
from store.config import StoreSettings, load_config
from store.persistence import RecordPersistence
from store.query import apply_force_stream, parse_list_params
from store.store import ObjectStore
from store.streams import ListStream, RecordStream

log = structlog.get_logger(__name__)

# Tipos servidos por padrão
TYPES: Dict[str, Type[BaseModel]] = {
    "testtype": TestType,
}

EVENT_STREAM = "text/event-stream"


def _wants_stream(request: Request) -> bool:
    return EVENT_STREAM in request.headers.get("accept", "")


async def _read_body(request: Request) -> Any:
    body = await request.body()
    if not body:
        raise BadRequestError("Corpo da requisição vazio")
    try:
        return parse_json(body.decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise BadRequestError(str(e))


def _json(data: Any, etag: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=data, status_code=status_code, headers={"ETag": etag})


def _stream_response(stream, headers: Optional[Dict[str, str]] = None) -> StreamingResponse:
    """Resposta SSE; a inscrição do stream é desfeita quando a resposta termina."""
    cleanup = BackgroundTasks()
    cleanup.add_task(stream.aclose)
    return StreamingResponse(
        stream.events(),
        media_type=EVENT_STREAM,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no", **(headers or {})},
        background=cleanup
    )


def create_app(settings: Optional[StoreSettings] = None, store: Optional[ObjectStore] = None) -> FastAPI:
    """
    Cria a aplicação FastAPI do Store.

    Args:
        settings: Configuração (padrão: load_config()).
        store: Store já construído (testes); se ausente, um novo é criado
            com a persistência configurada e os tipos de TYPES.

    Returns:
        FastAPI: Aplicação pronta para o uvicorn.
    """
    settings = settings or load_config()

    if store is None:
        store = ObjectStore(RecordPersistence(settings.data_path), node_id=settings.node_id)
        for type_name, model in TYPES.items():
            store.register_type(type_name, model)

    app = FastAPI(title=f"Store {settings.node_id}", description="Store de objetos versionados")
    app.state.store = store
    app.state.settings = settings

    # Configurar CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["ETag", "Stream-Format"],
    )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        log.info("Request failed",
                 method=request.method,
                 path=request.url.path,
                 status=exc.status_code,
                 error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.on_event("startup")
    async def startup_event():
        """Executado ao iniciar a aplicação"""
        log.info("Store starting up", node_id=settings.node_id, data_path=settings.data_path,
                 types=sorted(store.types))

    @app.on_event("shutdown")
    async def shutdown_event():
        """Executado ao encerrar a aplicação"""
        store.close()
        log.info("Store shutting down", node_id=settings.node_id)

    @app.get("/health", status_code=200, response_model=HealthResponse)
    async def health_check():
        """Endpoint para verificação de saúde."""
        return {"status": "healthy"}

    @app.get("/_debug", status_code=200, response_model=DebugInfo)
    async def debug_info():
        """Retorna informações sobre o estado atual do Store"""
        return store.get_status()

    @app.get("/metrics")
    async def metrics():
        """Expõe métricas no formato Prometheus"""
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/{type_name}", status_code=201)
    async def create_record(type_name: str, request: Request):
        """Cria um registro."""
        record = await store.create(type_name.lower(), await _read_body(request))
        return _json(record, record["etag"], status_code=201)

    @app.get("/{type_name}")
    async def list_records(type_name: str, request: Request):
        """Lista registros, ou abre um stream de listagem com Accept: text/event-stream."""
        opts = parse_list_params(request.query_params.multi_items())
        if_none_match = request.headers.get("if-none-match")

        if _wants_stream(request):
            stream_format = apply_force_stream(opts, request.headers.get("force-stream"))
            stream = ListStream(store, type_name.lower(), opts, if_none_match,
                                settings.stream_heartbeat_interval)
            await stream.open()
            log.info("List stream opened", type=type_name, format=stream_format.value)
            return _stream_response(stream, {"Stream-Format": stream_format.value})

        records = await store.list(type_name.lower(), opts)
        etag = compute_list_etag(record["etag"] for record in records)
        if if_none_match == etag:
            return Response(status_code=304, headers={"ETag": etag})
        return _json(records, etag)

    @app.get("/{type_name}/{record_id}")
    async def get_record(type_name: str, record_id: str, request: Request):
        """Lê um registro, ou abre um stream do registro com Accept: text/event-stream."""
        if_none_match = request.headers.get("if-none-match")

        if _wants_stream(request):
            stream = RecordStream(store, type_name.lower(), record_id, if_none_match,
                                  settings.stream_heartbeat_interval)
            await stream.open()
            log.info("Record stream opened", type=type_name, id=record_id)
            return _stream_response(stream)

        record = await store.get(type_name.lower(), record_id)
        if if_none_match == record["etag"]:
            return Response(status_code=304, headers={"ETag": record["etag"]})
        return _json(record, record["etag"])

    @app.put("/{type_name}/{record_id}")
    async def replace_record(type_name: str, record_id: str, request: Request):
        """Substitui um registro; If-Match exige que o ETag atual seja o informado."""
        record = await store.replace(
            type_name.lower(), record_id, await _read_body(request),
            if_match=request.headers.get("if-match")
        )
        return _json(record, record["etag"])

    @app.patch("/{type_name}/{record_id}")
    async def update_record(type_name: str, record_id: str, request: Request):
        """Atualiza campos de um registro; If-Match como no PUT."""
        record = await store.update(
            type_name.lower(), record_id, await _read_body(request),
            if_match=request.headers.get("if-match")
        )
        return _json(record, record["etag"])

    @app.delete("/{type_name}/{record_id}", status_code=204)
    async def delete_record(type_name: str, record_id: str, request: Request):
        """Remove um registro; If-Match como no PUT."""
        await store.delete(type_name.lower(), record_id, if_match=request.headers.get("if-match"))
        return Response(status_code=204)

    return app


def main():
    settings = load_config()
    setup_logging("store", debug=settings.debug, log_dir=settings.log_dir)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
