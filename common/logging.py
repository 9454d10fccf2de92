"""
File: common/logging.py
Sistema de logging unificado para o Store e o cliente.
Logs em JSON no console (e opcionalmente em arquivo), com structlog
encaminhando eventos estruturados para o logging padrão.
"""
import os
import sys
import json
import logging
import datetime
from typing import Any, Dict, Optional
from logging.handlers import RotatingFileHandler

import structlog

from common.utils import get_debug_mode, get_env_str

LOG_DIR = get_env_str("LOG_DIR", "")


def _to_stdlib(logger, method_name: str, event_dict: Dict[str, Any]):
    """
    Último processador do structlog: o evento vira a mensagem e os demais
    campos vão para `record.context`.
    """
    event = event_dict.pop("event", "")
    return (event,), {"extra": {"context": event_dict}}


def setup_logging(component_name: str, debug: Optional[bool] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configura o sistema de logging para um componente.

    Args:
        component_name: Nome do componente
        debug: Se True, habilita logs de DEBUG (sobrescreve variável de ambiente)
        log_dir: Diretório para salvar logs (sobrescreve variável de ambiente);
            vazio desativa o arquivo

    Returns:
        logging.Logger: Logger do componente
    """
    debug_enabled = debug if debug is not None else get_debug_mode()
    logs_directory = log_dir if log_dir is not None else LOG_DIR
    level = logging.DEBUG if debug_enabled else logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove handlers existentes
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(JsonFormatter(component_name, detailed=debug_enabled))
    root_logger.addHandler(console_handler)

    if logs_directory:
        os.makedirs(logs_directory, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(logs_directory, f"{component_name}.log"),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonFormatter(component_name, detailed=True))  # Sempre detalhado em arquivo
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.format_exc_info,
            _to_stdlib,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = logging.getLogger(component_name)
    logger.info(f"Logging inicializado para {component_name}. Debug: {debug_enabled}")
    return logger


class JsonFormatter(logging.Formatter):
    """
    Formatador que converte logs para formato JSON.
    """

    def __init__(self, component: str, detailed: bool = False):
        """
        Inicializa o formatador.

        Args:
            component: Nome do componente
            detailed: Se True, inclui campos adicionais no log
        """
        super().__init__()
        self.component = component
        self.detailed = detailed

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": int(record.created * 1000),  # milissegundos
            "datetime": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": self.component,
            "logger": record.name,
            "message": record.getMessage()
        }

        if self.detailed:
            log_data.update({
                "module": record.module,
                "function": record.funcName,
                "lineno": record.lineno,
            })

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }

        return json.dumps(log_data, default=str)
