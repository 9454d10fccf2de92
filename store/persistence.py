"""
Persistência de registros do Store em TinyDB (uma tabela por tipo).
"""
from typing import Any, Dict, List

import structlog
from tinydb import TinyDB, Query
from tinydb.storages import MemoryStorage

log = structlog.get_logger(__name__)

MEMORY_PATH = ":memory:"


class RecordPersistence:
    """
    Guarda os registros de cada tipo em uma tabela TinyDB.
    """
    def __init__(self, path: str = MEMORY_PATH):
        """
        Args:
            path: Arquivo JSON do TinyDB ou ":memory:".
        """
        self.path = path
        if path == MEMORY_PATH:
            self.db = TinyDB(storage=MemoryStorage)
        else:
            self.db = TinyDB(path, create_dirs=True)

    def load_records(self, type_name: str) -> List[Dict[str, Any]]:
        """Carrega todos os registros persistidos de um tipo."""
        records = [dict(doc) for doc in self.db.table(type_name).all()]
        log.info("Records loaded", type=type_name, count=len(records), path=self.path)
        return records

    async def save_record(self, type_name: str, record: Dict[str, Any]):
        """Insere ou substitui um registro (chave: id)."""
        try:
            Record = Query()
            self.db.table(type_name).upsert(dict(record), Record.id == record["id"])
            log.debug("Record saved to disk", type=type_name, id=record["id"], generation=record["generation"])
        except Exception as e:
            log.error("Error saving record", type=type_name, id=record.get("id"), error=str(e))
            raise

    async def delete_record(self, type_name: str, record_id: str):
        """Remove um registro."""
        try:
            Record = Query()
            self.db.table(type_name).remove(Record.id == record_id)
            log.debug("Record deleted from disk", type=type_name, id=record_id)
        except Exception as e:
            log.error("Error deleting record", type=type_name, id=record_id, error=str(e))
            raise

    def close(self):
        self.db.close()
