"""
Erros compartilhados entre o Store e o cliente.

Cada erro sabe o status HTTP correspondente; o servidor usa esse status na
resposta e o cliente faz o caminho inverso em `error_for_status`.
"""
from typing import Optional, Type


class StoreError(Exception):
    """Erro base do sistema."""
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(StoreError):
    """Requisição inválida (corpo, filtro ou ordenação)."""
    status_code = 400


class NotFoundError(StoreError):
    """Tipo ou registro inexistente."""
    status_code = 404


class PreconditionFailedError(StoreError):
    """O registro mudou desde o snapshot informado em `prev`."""
    status_code = 412


ERRORS_BY_STATUS = {
    400: BadRequestError,
    404: NotFoundError,
    412: PreconditionFailedError,
    422: BadRequestError,
}


def error_for_status(status_code: int, message: str) -> StoreError:
    """
    Constrói o erro correspondente a um status HTTP de falha.

    Args:
        status_code: Status HTTP recebido
        message: Mensagem de erro devolvida pelo servidor

    Returns:
        StoreError: Instância da subclasse adequada
    """
    error_class: Type[StoreError] = ERRORS_BY_STATUS.get(status_code, StoreError)
    return error_class(message, status_code=status_code)
