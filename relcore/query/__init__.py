"""
查询层模块 - 加载计划、加载策略引擎与查询会话
"""

from .plan import LoadPlan, LoadingStrategy, StrategyContext
from .loader import LoadingStrategyEngine
from .parser import QueryParser
from .session import Session

__all__ = ["LoadPlan", "LoadingStrategy", "StrategyContext", "LoadingStrategyEngine", "QueryParser", "Session"]
