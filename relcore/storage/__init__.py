"""
存储层模块 - 实体存储后端
"""

from typing import Dict, Optional

from ..core.config import StorageConfig
from .base import EntityStore
from .memory_store import InMemoryEntityStore
from .json_store import JsonFileEntityStore


def create_store(config: StorageConfig, primary_keys: Optional[Dict[str, str]] = None) -> EntityStore:
    """根据配置创建实体存储"""
    if config.backend == "memory":
        return InMemoryEntityStore(config, primary_keys)
    elif config.backend == "json":
        return JsonFileEntityStore(config, primary_keys)
    else:
        raise ValueError(f"未知的存储后端: {config.backend}")


__all__ = ["EntityStore", "InMemoryEntityStore", "JsonFileEntityStore", "create_store"]
