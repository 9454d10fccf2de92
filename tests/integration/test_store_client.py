"""
Testes de integração contra um Store em execução (python -m store.main).

    STORE_URL=http://localhost:8080 pytest --runintegration tests/integration
"""
import asyncio
import logging

import httpx
import pytest
from tenacity import retry, stop_after_attempt, wait_fixed

from client.client import Client
from client.config import STORE_URL
from common.errors import NotFoundError, PreconditionFailedError
from common.models import Filter, ListOpts, StreamFormat, TestTypeRequest

# Configurar logging
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

# Marca para testes que exigem um Store em execução
pytestmark = pytest.mark.skipif(
    "not config.getoption('--runintegration')",
    reason="Precisa da flag --runintegration para executar"
)


@retry(stop=stop_after_attempt(10), wait=wait_fixed(0.5))
def wait_for_store():
    """Esperar o Store responder em /health."""
    response = httpx.get(f"{STORE_URL}/health", timeout=2)
    response.raise_for_status()


@pytest.fixture
async def client():
    wait_for_store()
    store_client = Client(STORE_URL)
    yield store_client
    await store_client.close()


@pytest.mark.asyncio
async def test_replace_with_stale_prev(client):
    """Replace com snapshot antigo é rejeitado pelo Store real."""
    created = await client.create_test_type(TestTypeRequest(text="foo", num=5))
    get1 = await client.get_test_type(created.id)

    await client.replace_test_type(created.id, TestTypeRequest(text="bar"))

    with pytest.raises(PreconditionFailedError):
        await client.replace_test_type(created.id, TestTypeRequest(text="zig"), prev=get1)

    get2 = await client.get_test_type(created.id)
    assert get2.text == "bar", "Registro deve manter a escrita aceita"


@pytest.mark.asyncio
async def test_get_stream_follows_updates(client):
    """O stream de um registro entrega initial, update e termina no delete."""
    created = await client.create_test_type({"text": "foo"})
    stream = await client.stream_get_test_type(created.id)

    initial = await asyncio.wait_for(stream.read(), 5)
    assert initial.text == "foo"

    await client.update_test_type(created.id, {"text": "bar"})
    updated = await asyncio.wait_for(stream.read(), 5)
    assert updated.text == "bar"

    await client.delete_test_type(created.id)
    assert await asyncio.wait_for(stream.read(), 5) is None
    assert isinstance(stream.error, NotFoundError)
    await stream.close()


@pytest.mark.asyncio
async def test_list_stream_diff(client):
    """O stream diff de listagem acompanha criações filtradas."""
    marker = f"diff-{id(client)}"
    opts = ListOpts(stream=StreamFormat.DIFF, filters=[Filter(path="text", value=marker)])
    stream = await client.stream_list_test_type(opts)

    assert await asyncio.wait_for(stream.read(), 5) == []

    created = await client.create_test_type({"text": marker})
    items = await asyncio.wait_for(stream.read(), 5)
    assert [item.id for item in items] == [created.id]

    await stream.close()
