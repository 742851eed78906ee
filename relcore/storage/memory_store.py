"""
内存实体存储
"""

from typing import Dict, List, Any, Optional, Iterable

from loguru import logger

from ..core.config import StorageConfig
from .base import EntityStore


class InMemoryEntityStore(EntityStore):
    """
    内存表存储 - 每个类型一张主键索引表
    """

    def __init__(self, config: StorageConfig, primary_keys: Optional[Dict[str, str]] = None):
        super().__init__(config, primary_keys)
        self.tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}

        logger.info("内存实体存储初始化完成")

    def _table(self, entity_type: str) -> Dict[Any, Dict[str, Any]]:
        return self.tables.get(entity_type, {})

    async def insert(self, entity_type: str, row: Dict[str, Any]) -> Any:
        self._ensure_open()
        primary_key = self.primary_key(entity_type)
        if row.get(primary_key) is None:
            raise ValueError(f"{entity_type} 行缺少主键字段: {primary_key}")

        self.tables.setdefault(entity_type, {})[row[primary_key]] = dict(row)
        return row[primary_key]

    async def fetch_by_id(self, entity_type: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        self._record_fetch("fetch_by_id", entity_type)
        row = self._table(entity_type).get(entity_id)
        return dict(row) if row is not None else None

    async def fetch_by_foreign_key(self, entity_type: str, fk_field: str, value: Any) -> List[Dict[str, Any]]:
        self._record_fetch("fetch_by_foreign_key", entity_type)
        return self._sorted(
            entity_type,
            (row for row in self._table(entity_type).values() if row.get(fk_field) == value)
        )

    async def fetch_all(self, entity_type: str) -> List[Dict[str, Any]]:
        self._record_fetch("fetch_all", entity_type)
        return self._sorted(entity_type, self._table(entity_type).values())

    async def fetch_by_ids(self, entity_type: str, entity_ids: Iterable[Any]) -> Dict[Any, Dict[str, Any]]:
        self._record_fetch("fetch_by_ids", entity_type)
        table = self._table(entity_type)
        return {
            entity_id: dict(table[entity_id])
            for entity_id in dict.fromkeys(entity_ids)
            if entity_id in table
        }

    async def fetch_by_foreign_keys(self, entity_type: str, fk_field: str,
                                    values: Iterable[Any]) -> Dict[Any, List[Dict[str, Any]]]:
        self._record_fetch("fetch_by_foreign_keys", entity_type)
        grouped = {value: [] for value in dict.fromkeys(values)}
        for row in self._sorted(entity_type, self._table(entity_type).values()):
            value = row.get(fk_field)
            if value in grouped:
                grouped[value].append(row)
        return grouped

    async def get_statistics(self) -> Dict[str, Any]:
        stats = await super().get_statistics()
        stats['tables'] = {name: len(rows) for name, rows in self.tables.items()}
        return stats
