"""
Configurações para o componente Store.

Os valores padrão vêm de variáveis de ambiente; se STORE_CONFIG_FILE apontar
para um arquivo YAML, as chaves dele sobrescrevem os padrões.
"""
import os
import logging
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel

from common.utils import get_env_int, get_env_str, get_env_float, get_env_bool


# Informações do nó
NODE_ID = get_env_int("NODE_ID", 1)

# Configurações do servidor
HOST = get_env_str("HOST", "0.0.0.0")
PORT = get_env_int("PORT", 8080)

# Persistência (":memory:" mantém tudo em memória)
DATA_PATH = get_env_str("DATA_PATH", ":memory:")

# Intervalo entre heartbeats dos streams SSE
STREAM_HEARTBEAT_INTERVAL = get_env_float("STREAM_HEARTBEAT_INTERVAL", 5.0)  # 5 segundos

# Logging
DEBUG = get_env_bool("DEBUG", False)
LOG_DIR = get_env_str("LOG_DIR", "")

CONFIG_FILE = get_env_str("STORE_CONFIG_FILE", "")


class StoreSettings(BaseModel):
    """Configuração efetiva do Store."""
    node_id: int = NODE_ID
    host: str = HOST
    port: int = PORT
    data_path: str = DATA_PATH
    stream_heartbeat_interval: float = STREAM_HEARTBEAT_INTERVAL
    debug: bool = DEBUG
    log_dir: str = LOG_DIR


def load_config(path: Optional[str] = None) -> StoreSettings:
    """
    Carrega a configuração do Store.

    Args:
        path: Arquivo YAML opcional (padrão: STORE_CONFIG_FILE)

    Returns:
        StoreSettings: Configuração carregada
    """
    config_file = path if path is not None else CONFIG_FILE
    overrides: Dict[str, Any] = {}

    if config_file:
        if not os.path.exists(config_file):
            raise FileNotFoundError(f"Arquivo de configuração não encontrado: {config_file}")

        with open(config_file, "r") as f:
            overrides = yaml.safe_load(f) or {}

        if not isinstance(overrides, dict):
            raise ValueError(f"Arquivo de configuração inválido: {config_file}")

        logging.getLogger(__name__).info(f"Configuração carregada de {config_file}")

    return StoreSettings(**overrides)
