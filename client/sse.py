"""
Leitura de Server-Sent Events (text/event-stream).
"""
from typing import AsyncIterator, List, NamedTuple, Optional


class ServerSentEvent(NamedTuple):
    event: str
    data: str
    id: Optional[str] = None


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[ServerSentEvent]:
    """
    Agrupa linhas de um text/event-stream em eventos.

    Linhas "data:" consecutivas são unidas com "\\n"; comentários (":") e
    campos desconhecidos são ignorados; uma linha vazia despacha o evento.
    Um evento incompleto no fim da conexão é descartado.
    """
    event = "message"
    event_id: Optional[str] = None
    data: List[str] = []

    async for line in lines:
        line = line.rstrip("\r\n")

        if not line:
            if data:
                yield ServerSentEvent(event=event, data="\n".join(data), id=event_id)
            event, event_id, data = "message", None, []
            continue

        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            event = value
        elif field == "data":
            data.append(value)
        elif field == "id":
            event_id = value

