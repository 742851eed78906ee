"""
JSON 文件实体存储 - 每个类型一个 JSON 文件
"""

import asyncio
import json
from typing import Dict, List, Any, Optional, Iterable
from pathlib import Path
import aiofiles
import aiofiles.os
from loguru import logger

from ..core.config import StorageConfig
from ..core.errors import StoreUnavailable
from .base import EntityStore


class JsonFileEntityStore(EntityStore):
    """
    JSON 文件存储

    每个类型存为 <entity_store_dir>/<类型>.json，内容为行列表。
    每次获取都读取文件，不缓存。
    """

    def __init__(self, config: StorageConfig, primary_keys: Optional[Dict[str, str]] = None):
        """
        初始化 JSON 文件存储

        Args:
            config: 存储配置
            primary_keys: 类型名 -> 主键字段
        """
        super().__init__(config, primary_keys)
        self.entity_dir = Path(config.entity_store_dir)
        self.entity_dir.mkdir(parents=True, exist_ok=True)
        # 每个类型一把写锁，串行化读-改-写
        self._write_locks: Dict[str, asyncio.Lock] = {}

        logger.info(f"JSON 实体存储初始化完成，目录: {self.entity_dir}")

    def _table_path(self, entity_type: str) -> Path:
        return self.entity_dir / f"{entity_type}.json"

    async def _read_table(self, entity_type: str) -> List[Dict[str, Any]]:
        """读取类型文件"""
        table_path = self._table_path(entity_type)
        if not table_path.exists():
            return []

        try:
            async with aiofiles.open(table_path, 'r', encoding='utf-8') as f:
                return json.loads(await f.read())
        except (OSError, ValueError) as e:
            logger.error(f"读取实体文件失败: {table_path}: {e}")
            raise StoreUnavailable(f"读取实体文件失败: {table_path}") from e

    async def _write_table(self, entity_type: str, rows: List[Dict[str, Any]]):
        """写入临时文件后替换类型文件，读取方不会看到写了一半的文件"""
        table_path = self._table_path(entity_type)
        temp_path = table_path.with_name(f".{table_path.name}.tmp")
        try:
            async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
                await f.write(json.dumps(rows, ensure_ascii=False, indent=2))
            await aiofiles.os.replace(temp_path, table_path)
        except OSError as e:
            logger.error(f"写入实体文件失败: {table_path}: {e}")
            raise StoreUnavailable(f"写入实体文件失败: {table_path}") from e

    def _write_lock(self, entity_type: str) -> asyncio.Lock:
        lock = self._write_locks.get(entity_type)
        if lock is None:
            lock = self._write_locks[entity_type] = asyncio.Lock()
        return lock

    async def insert(self, entity_type: str, row: Dict[str, Any]) -> Any:
        self._ensure_open()
        primary_key = self.primary_key(entity_type)
        if row.get(primary_key) is None:
            raise ValueError(f"{entity_type} 行缺少主键字段: {primary_key}")

        async with self._write_lock(entity_type):
            rows = [r for r in await self._read_table(entity_type) if r.get(primary_key) != row[primary_key]]
            rows.append(dict(row))
            await self._write_table(entity_type, self._sorted(entity_type, rows))

        logger.debug(f"实体已写入: {entity_type}({row[primary_key]!r})")
        return row[primary_key]

    async def fetch_by_id(self, entity_type: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        self._record_fetch("fetch_by_id", entity_type)
        primary_key = self.primary_key(entity_type)
        for row in await self._read_table(entity_type):
            if row.get(primary_key) == entity_id:
                return row
        return None

    async def fetch_by_foreign_key(self, entity_type: str, fk_field: str, value: Any) -> List[Dict[str, Any]]:
        self._record_fetch("fetch_by_foreign_key", entity_type)
        rows = await self._read_table(entity_type)
        return self._sorted(entity_type, (row for row in rows if row.get(fk_field) == value))

    async def fetch_all(self, entity_type: str) -> List[Dict[str, Any]]:
        self._record_fetch("fetch_all", entity_type)
        return self._sorted(entity_type, await self._read_table(entity_type))

    async def fetch_by_ids(self, entity_type: str, entity_ids: Iterable[Any]) -> Dict[Any, Dict[str, Any]]:
        self._record_fetch("fetch_by_ids", entity_type)
        primary_key = self.primary_key(entity_type)
        wanted = dict.fromkeys(entity_ids)
        return {
            row[primary_key]: row
            for row in await self._read_table(entity_type)
            if row.get(primary_key) in wanted
        }

    async def fetch_by_foreign_keys(self, entity_type: str, fk_field: str,
                                    values: Iterable[Any]) -> Dict[Any, List[Dict[str, Any]]]:
        self._record_fetch("fetch_by_foreign_keys", entity_type)
        grouped = {value: [] for value in dict.fromkeys(values)}
        for row in self._sorted(entity_type, await self._read_table(entity_type)):
            value = row.get(fk_field)
            if value in grouped:
                grouped[value].append(row)
        return grouped

    async def get_statistics(self) -> Dict[str, Any]:
        stats = await super().get_statistics()
        stats['storage_directory'] = str(self.entity_dir)
        stats['tables'] = sorted(path.stem for path in self.entity_dir.glob("*.json"))
        return stats
