"""
Modelos de dados comuns ao Store e ao cliente.
"""
from typing import Any, Dict, List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


# Campos controlados pelo servidor, presentes em todo registro
METADATA_FIELDS = ("id", "etag", "generation")

# Operadores de filtro aceitos na listagem
FILTER_OPS = ("eq", "gt", "gte", "lt", "lte", "hp", "in")


class StreamFormat(str, Enum):
    """Formatos de stream de listagem."""
    FULL = "full"
    DIFF = "diff"


class EventType(str, Enum):
    """Tipos de evento enviados nos streams SSE."""
    INITIAL = "initial"
    UPDATE = "update"
    DELETE = "delete"
    LIST = "list"
    ADD = "add"
    REMOVE = "remove"
    SYNC = "sync"
    NOT_MODIFIED = "notModified"
    HEARTBEAT = "heartbeat"


class Metadata(BaseModel):
    """Metadados de um registro armazenado."""
    id: str
    etag: str
    generation: int = 0


class TestType(BaseModel):
    """Esquema do tipo TestType no servidor."""
    __test__ = False
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    num: int = 0


class TestTypeRequest(BaseModel):
    """Corpo de requisição do TestType. Só os campos definidos são enviados."""
    __test__ = False

    text: Optional[str] = None
    num: Optional[int] = None


class TestTypeResponse(Metadata):
    """Registro TestType devolvido pelo servidor."""
    __test__ = False

    text: str = ""
    num: int = 0


class Filter(BaseModel):
    """Filtro de listagem: `path` `op` `value`."""
    path: str
    op: str = "eq"
    value: Any


class ListOpts(BaseModel):
    """Opções de listagem (e de stream de listagem)."""
    stream: Optional[StreamFormat] = None
    limit: Optional[int] = None
    offset: Optional[int] = None
    after: Optional[str] = None
    sorts: List[str] = Field(default_factory=list)
    filters: List[Filter] = Field(default_factory=list)
    prev: Optional[List[Any]] = None


class ErrorResponse(BaseModel):
    """Corpo das respostas de erro."""
    error: str


class HealthResponse(BaseModel):
    """Modelo para resposta de verificação de saúde."""
    status: str = "healthy"


class DebugInfo(BaseModel):
    """Informações de estado do Store."""
    node_id: int
    types: Dict[str, int]
    active_streams: int
    uptime_seconds: float
    timestamp: int
