"""
Configurações para o componente Cliente.
"""
from common.utils import get_env_int, get_env_str, get_env_float


# Store de destino
STORE_URL = get_env_str("STORE_URL", "http://localhost:8080")

# Configurações de retentativa (apenas leituras são repetidas)
MAX_RETRIES = get_env_int("MAX_RETRIES", 3)
RETRY_BACKOFF_BASE = get_env_float("RETRY_BACKOFF_BASE", 0.5)  # 500ms
RETRY_BACKOFF_MAX = get_env_float("RETRY_BACKOFF_MAX", 5.0)  # 5 segundos
REQUEST_TIMEOUT = get_env_float("REQUEST_TIMEOUT", 10.0)  # 10.0 segundos
