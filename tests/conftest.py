"""
Configuração global para testes.
Contém fixtures compartilhadas entre testes unitários e de integração.
"""
import logging

import httpx
import pytest

from client.client import Client
from common.models import TestType
from store.config import StoreSettings
from store.main import create_app
from store.persistence import RecordPersistence
from store.store import ObjectStore


def pytest_addoption(parser):
    """Adicionar opções específicas para testes de integração."""
    parser.addoption(
        "--runintegration", action="store_true", default=False, help="Executar testes de integração"
    )


# Configurar logging para testes
logging.basicConfig(level=logging.INFO)


@pytest.fixture
def settings():
    """Configuração de teste: tudo em memória e heartbeats curtos."""
    return StoreSettings(node_id=1, data_path=":memory:", stream_heartbeat_interval=0.05)


@pytest.fixture
def store():
    """Store em memória com o tipo TestType registrado."""
    object_store = ObjectStore(RecordPersistence(":memory:"), node_id=1)
    object_store.register_type("testtype", TestType)
    yield object_store
    object_store.close()


@pytest.fixture
def app(settings, store):
    """Aplicação FastAPI ligada ao store de teste."""
    return create_app(settings, store)


@pytest.fixture
async def client(app):
    """Cliente falando com a aplicação pelo transporte ASGI, sem rede."""
    store_client = Client("http://store.test", transport=httpx.ASGITransport(app=app), max_retries=1)
    yield store_client
    await store_client.close()
