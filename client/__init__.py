"""
Cliente assíncrono do Store.

Oferece as operações create/get/list/find/update/replace/delete, com
pré-condição `prev` nas escritas, e streams SSE de registro e de listagem.
"""

__version__ = "1.0.0"
