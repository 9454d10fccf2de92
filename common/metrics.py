"""
Configuração de métricas Prometheus do Store.
"""
from prometheus_client import Counter, Histogram, Gauge
from functools import wraps
import time
from typing import Callable, Any


# Rótulo das operações em tipos não registrados
UNKNOWN_TYPE = "unknown"

store_metrics = {
    "operations": Counter(
        "objstore_operations_total",
        "Número total de operações por tipo, operação e status",
        ["type", "operation", "status"]
    ),
    "precondition_failures": Counter(
        "objstore_precondition_failures_total",
        "Número de escritas rejeitadas por ETag desatualizado",
        ["type", "operation"]
    ),
    "active_records": Gauge(
        "objstore_active_records",
        "Número de registros armazenados",
        ["type"]
    ),
    "active_streams": Gauge(
        "objstore_active_streams",
        "Número de streams SSE abertos",
        ["type"]
    ),
    "operation_duration": Histogram(
        "objstore_operation_duration_seconds",
        "Duração das operações no Store",
        ["type", "operation"]
    ),
}


def timed(operation: str) -> Callable:
    """
    Decorador que mede a duração de um método assíncrono do Store e conta
    o resultado (success ou o nome da classe do erro).

    O primeiro argumento posicional depois de `self` deve ser o nome do tipo.
    Tipos não registrados em `self.types` são contados como UNKNOWN_TYPE,
    já que o nome vem da URL.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self, type_name: str, *args: Any, **kwargs: Any) -> Any:
            label = type_name if type_name in self.types else UNKNOWN_TYPE
            start = time.perf_counter()
            status = "success"
            try:
                return await func(self, type_name, *args, **kwargs)
            except Exception as e:
                status = type(e).__name__
                raise
            finally:
                store_metrics["operation_duration"].labels(type=label, operation=operation).observe(
                    time.perf_counter() - start
                )
                store_metrics["operations"].labels(type=label, operation=operation, status=status).inc()
        return wrapper
    return decorator
