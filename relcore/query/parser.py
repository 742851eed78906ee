"""
查询解析器模块 - 解析文本查询

语法：
    [SELECT *] FROM <类型> [WHERE f = v [AND ...]] [INCLUDE p1, p2] [STRATEGY s] [LIMIT n]
"""

import re
from typing import Dict, Any, Optional

from loguru import logger

from ..core.config import QueryConfig
from ..core.errors import QuerySyntaxError, InvalidLoadPlan
from .plan import LoadPlan, LoadingStrategy, StrategyContext


_CLAUSE_PATTERN = re.compile(
    r'^\s*(?:SELECT\s+\*\s+)?FROM\s+(?P<entity_type>\w+)'
    r'(?:\s+WHERE\s+(?P<where>.*?))?'
    r'(?:\s+INCLUDE\s+(?P<include>.*?))?'
    r'(?:\s+STRATEGY\s+(?P<strategy>\w+))?'
    r'(?:\s+LIMIT\s+(?P<limit>\d+))?'
    r'\s*;?\s*$',
    re.IGNORECASE | re.DOTALL
)

_CONDITION_PATTERN = re.compile(
    r'(?P<field>\w+)\s*=\s*(?P<value>\'[^\']*\'|"[^"]*"|[^\s\'"]+)'
)

_AND_PATTERN = re.compile(r'\s+AND\s+', re.IGNORECASE)


class QueryParser:
    """
    查询解析器 - 将文本查询转换为查询对象
    """

    def __init__(self, config: QueryConfig):
        """
        初始化查询解析器

        Args:
            config: 查询配置
        """
        self.config = config

        logger.info("查询解析器初始化完成")

    def parse(self, query: str) -> Dict[str, Any]:
        """
        解析查询

        Args:
            query: 查询字符串

        Returns:
            {'entity_type', 'predicate', 'context', 'limit'}

        Raises:
            QuerySyntaxError: 语句无法解析
        """
        match = _CLAUSE_PATTERN.match(query or "")
        if not match:
            raise QuerySyntaxError(f"无法解析查询: {query!r}")

        predicate = self._parse_where(match.group('where'))
        plan = self._parse_include(match.group('include'))
        context = self._build_context(match.group('strategy'), plan)
        limit = int(match.group('limit')) if match.group('limit') else None

        parsed_query = {
            'entity_type': match.group('entity_type'),
            'predicate': predicate,
            'context': context,
            'limit': limit
        }

        strategy_name = context.strategy.value if context else "默认"
        logger.debug(f"查询解析完成: {parsed_query['entity_type']}，策略: {strategy_name}")
        return parsed_query

    def _parse_where(self, where: Optional[str]) -> Optional[Dict[str, Any]]:
        """解析 WHERE 条件，仅支持 AND 连接的等值条件"""
        if not where:
            return None

        # 逐个条件扫描，引号内的 AND 属于字面量
        where = where.strip()
        conditions = {}
        position = 0
        while True:
            condition = _CONDITION_PATTERN.match(where, position)
            if not condition:
                raise QuerySyntaxError(f"无法解析条件: {where[position:]!r}")
            conditions[condition.group('field')] = self._parse_literal(condition.group('value'))

            position = condition.end()
            if position == len(where):
                return conditions

            separator = _AND_PATTERN.match(where, position)
            if not separator:
                raise QuerySyntaxError(f"无法解析条件: {where[position:]!r}")
            position = separator.end()

    def _parse_include(self, include: Optional[str]) -> LoadPlan:
        if not include:
            return LoadPlan()
        try:
            return LoadPlan.parse(include)
        except InvalidLoadPlan as e:
            raise QuerySyntaxError(f"INCLUDE 子句错误: {e}") from e

    def _build_context(self, strategy: Optional[str], plan: LoadPlan) -> Optional[StrategyContext]:
        # 有 INCLUDE 而未指定策略时使用 eager
        if strategy is None:
            strategy = LoadingStrategy.EAGER.value if plan else None
        if strategy is None:
            return None

        try:
            return StrategyContext(strategy.lower(), plan)
        except InvalidLoadPlan as e:
            raise QuerySyntaxError(f"STRATEGY 子句错误: {e}") from e

    @staticmethod
    def _parse_literal(text: str) -> Any:
        """解析字面量"""
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
            return text[1:-1]

        lowered = text.lower()
        if lowered == "null":
            return None
        if lowered == "true":
            return True
        if lowered == "false":
            return False

        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            raise QuerySyntaxError(f"无法解析字面量: {text!r}")
