"""
RelationCoreDB - 关系字段加载策略引擎

为从面向行的存储中获取的实体解析关系字段，支持三种策略：
按需加载（deferred）、预加载（eager）与隐式加载（implicit）。
"""

__version__ = "0.1.0"
__author__ = "RelationCoreDB Team"

from .core.database import RelationCoreDB
from .core.config import Config
from .core.entity import Entity, RelationState, UNRESOLVED
from .query.plan import LoadPlan, LoadingStrategy, StrategyContext

__all__ = [
    "RelationCoreDB",
    "Config",
    "Entity",
    "RelationState",
    "UNRESOLVED",
    "LoadPlan",
    "LoadingStrategy",
    "StrategyContext",
]
