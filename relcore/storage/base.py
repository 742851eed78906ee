"""
实体存储抽象 - 面向行的存储边界
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Iterable

from loguru import logger

from ..core.config import StorageConfig
from ..core.errors import StoreUnavailable


class EntityStore(ABC):
    """
    实体存储基类

    行以 dict 表示。按主键查找返回 None 表示不存在（不是错误）；
    多行结果按主键升序返回。每次公开的获取调用计为一次往返。
    """

    def __init__(self, config: StorageConfig, primary_keys: Optional[Dict[str, str]] = None):
        """
        初始化实体存储

        Args:
            config: 存储配置
            primary_keys: 类型名 -> 主键字段
        """
        self.config = config
        self.primary_keys = dict(primary_keys or {})
        self.fetch_count = 0
        self.closed = False

    def primary_key(self, entity_type: str) -> str:
        return self.primary_keys.get(entity_type, self.config.primary_key)

    def _ensure_open(self):
        if self.closed:
            raise StoreUnavailable("实体存储已关闭")

    def _record_fetch(self, operation: str, entity_type: str):
        self._ensure_open()
        self.fetch_count += 1
        logger.debug(f"存储获取 #{self.fetch_count}: {operation} {entity_type}")

    def _sorted(self, entity_type: str, rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        primary_key = self.primary_key(entity_type)
        return sorted((dict(row) for row in rows), key=lambda row: row[primary_key])

    @abstractmethod
    async def fetch_by_id(self, entity_type: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        """按主键获取单行，不存在时返回 None"""
        pass

    @abstractmethod
    async def fetch_by_foreign_key(self, entity_type: str, fk_field: str, value: Any) -> List[Dict[str, Any]]:
        """按字段相等获取多行，按主键升序"""
        pass

    @abstractmethod
    async def fetch_all(self, entity_type: str) -> List[Dict[str, Any]]:
        """获取某类型的全部行，按主键升序"""
        pass

    @abstractmethod
    async def insert(self, entity_type: str, row: Dict[str, Any]) -> Any:
        """插入一行，返回主键"""
        pass

    async def fetch_by_ids(self, entity_type: str, entity_ids: Iterable[Any]) -> Dict[Any, Dict[str, Any]]:
        """
        批量按主键获取

        默认实现逐个查找，后端可重写为单次往返。

        Returns:
            主键 -> 行（不存在的主键不出现）
        """
        rows = {}
        for entity_id in dict.fromkeys(entity_ids):
            row = await self.fetch_by_id(entity_type, entity_id)
            if row is not None:
                rows[entity_id] = row
        return rows

    async def fetch_by_foreign_keys(self, entity_type: str, fk_field: str,
                                    values: Iterable[Any]) -> Dict[Any, List[Dict[str, Any]]]:
        """
        批量按外键获取

        Returns:
            外键值 -> 行列表（按主键升序，无匹配时为空列表）
        """
        grouped = {}
        for value in dict.fromkeys(values):
            grouped[value] = await self.fetch_by_foreign_key(entity_type, fk_field, value)
        return grouped

    async def get_statistics(self) -> Dict[str, Any]:
        """获取存储统计信息"""
        return {
            'backend': self.config.backend,
            'fetch_count': self.fetch_count,
            'closed': self.closed
        }

    def reset_statistics(self):
        self.fetch_count = 0

    async def close(self):
        """关闭存储"""
        self.closed = True
        logger.info(f"实体存储已关闭: {type(self).__name__}")
