"""
Módulo de comunicação HTTP usado pelo cliente do Store.
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("communication")


class HttpClient:
    """
    Cliente HTTP para comunicação com o Store.

    Características:
    1. Timeouts configuráveis
    2. Conexões keep-alive reaproveitadas
    3. Cabeçalhos padrão aplicados a toda requisição
    4. Transporte substituível (ASGI ou mock em testes)
    """

    def __init__(self, base_url: str, timeout: float = 30.0, max_connections: int = 100,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Inicializa o cliente HTTP.

        Args:
            base_url: URL base do Store
            timeout: Timeout padrão para requisições em segundos
            max_connections: Número máximo de conexões concorrentes
            transport: Transporte httpx alternativo
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.limits = httpx.Limits(max_connections=max_connections)
        self.transport = transport
        self.headers: Dict[str, str] = {}
        self.debug = False
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """
        Obtém o cliente HTTP assíncrono, criando-o se necessário.

        Returns:
            httpx.AsyncClient: Cliente HTTP assíncrono
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                limits=self.limits,
                transport=self.transport,
                follow_redirects=True
            )
        return self._client

    async def close(self):
        """Fecha o cliente HTTP."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _merge_headers(self, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = dict(self.headers)
        if headers:
            merged.update(headers)
        return merged

    async def request(self, method: str, path: str, json: Any = None,
                      params: Any = None, headers: Optional[Dict[str, str]] = None,
                      timeout: Optional[float] = None) -> httpx.Response:
        """
        Faz uma requisição e devolve a resposta sem verificar o status.

        Args:
            method: Método HTTP
            path: Caminho relativo à URL base
            json: Corpo JSON
            params: Parâmetros da query string
            headers: Cabeçalhos adicionais
            timeout: Timeout desta requisição (sobrescreve o padrão)

        Returns:
            httpx.Response: Resposta recebida

        Raises:
            httpx.TransportError: Se a conexão falhar
        """
        if self.debug:
            logger.debug(f"{method} {path} params={params} body={json}")

        response = await self.client.request(
            method,
            path,
            json=json,
            params=params,
            headers=self._merge_headers(headers),
            timeout=timeout or self.timeout
        )

        if self.debug:
            logger.debug(f"{method} {path} -> {response.status_code}")

        return response

    async def open_stream(self, method: str, path: str, params: Any = None,
                          headers: Optional[Dict[str, str]] = None) -> httpx.Response:
        """
        Abre uma requisição com corpo em streaming, sem timeout de leitura.
        Quem chama deve fechar a resposta com `aclose()`.

        Raises:
            httpx.TransportError: Se a conexão falhar
        """
        if self.debug:
            logger.debug(f"{method} {path} (stream) params={params}")

        request = self.client.build_request(
            method,
            path,
            params=params,
            headers=self._merge_headers(headers),
            timeout=httpx.Timeout(self.timeout, read=None)
        )
        return await self.client.send(request, stream=True)
