import hashlib
import json
import logging
import os
import time
import uuid
from typing import Any, Dict, Iterable

logger = logging.getLogger(__name__)

def get_env_var(var_name: str, default: Any = None) -> Any:
    """
    Obtém uma variável de ambiente, com valor padrão opcional.

    Args:
        var_name: Nome da variável de ambiente
        default: Valor padrão caso a variável não exista

    Returns:
        Valor da variável de ambiente ou o valor padrão
    """
    return os.environ.get(var_name, default)

def get_env_str(var_name: str, default: str = "") -> str:
    return str(get_env_var(var_name, default))

def get_env_int(var_name: str, default: int = 0) -> int:
    value = get_env_var(var_name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Valor inválido para {var_name}: {value!r}, usando {default}")
        return default

def get_env_float(var_name: str, default: float = 0.0) -> float:
    value = get_env_var(var_name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Valor inválido para {var_name}: {value!r}, usando {default}")
        return default

def get_env_bool(var_name: str, default: bool = False) -> bool:
    value = get_env_var(var_name)
    if value is None or value == "":
        return default
    return str(value).lower() in ("true", "1", "yes")

def get_debug_mode() -> bool:
    """
    Verifica se o modo de depuração está ativado.

    Returns:
        bool: True se o modo de depuração estiver ativado, False caso contrário
    """
    return get_env_bool("DEBUG", False)

def generate_id() -> str:
    """
    Gera um ID único usando UUID4.

    Returns:
        str: ID único gerado (hex, sem hífens)
    """
    return uuid.uuid4().hex

def current_timestamp() -> int:
    """
    Obtém o timestamp atual em milissegundos.

    Returns:
        int: Timestamp atual em milissegundos
    """
    return int(time.time() * 1000)

def canonical_json(data: Any) -> str:
    """Serializa de forma determinística (chaves ordenadas, sem espaços)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)

def compute_etag(record: Dict[str, Any]) -> str:
    """
    Calcula o ETag de um registro.

    O campo "etag" é ignorado, mas "id" e "generation" entram no hash,
    então qualquer escrita produz um ETag novo.

    Args:
        record: Registro completo (metadados + campos)

    Returns:
        str: ETag no formato "etag:<sha256>"
    """
    data = {k: v for k, v in record.items() if k != "etag"}
    digest = hashlib.sha256(canonical_json(data).encode("utf-8")).hexdigest()
    return f"etag:{digest}"

def compute_list_etag(etags: Iterable[str]) -> str:
    """
    Calcula o ETag de um resultado de listagem a partir dos ETags dos itens,
    na ordem em que aparecem.
    """
    digest = hashlib.sha256()
    for etag in etags:
        digest.update(etag.encode("utf-8"))
        digest.update(b"\n")
    return f"etag:{digest.hexdigest()}"

def parse_json(data: str) -> Any:
    """
    Faz o parse de uma string JSON.

    Args:
        data: String JSON

    Returns:
        Dados parseados

    Raises:
        ValueError: Se a string não for JSON válido
    """
    try:
        return json.loads(data)
    except json.JSONDecodeError as e:
        logger.error(f"Erro ao fazer parse do JSON: {str(e)}")
        raise ValueError(f"JSON inválido: {e}") from e
