"""
查询会话模块 - 客户端代码调用的查询入口
"""

import uuid
from typing import Dict, List, Any, Optional, Union, Callable

from loguru import logger

from ..core.config import Config
from ..core.entity import Entity
from ..core.errors import QuerySyntaxError, ResolutionNotAllowed, SessionClosed
from ..core.registry import RelationRegistry
from ..storage.base import EntityStore
from .loader import LoadingStrategyEngine
from .parser import QueryParser
from .plan import StrategyContext

Predicate = Union[None, Dict[str, Any], Callable[[Dict[str, Any]], bool]]


class Session:
    """
    查询会话

    会话生成的实体以弱引用指向会话；会话关闭后，通过这些实体
    解析关系字段会抛出 SessionClosed。

    实体不会让会话保持存活：调用方需要持有会话引用（例如使用
    `async with db.session() as session`）。`await db.session().query(...)`
    这样的临时会话可能立即被回收，返回的 deferred/implicit 实体
    随后解析关系时会抛出 SessionClosed。
    """

    def __init__(self,
                 store: EntityStore,
                 registry: RelationRegistry,
                 engine: LoadingStrategyEngine,
                 config: Config,
                 parser: Optional[QueryParser] = None):
        """
        初始化会话

        Args:
            store: 实体存储
            registry: 关系注册表
            engine: 加载策略引擎
            config: 配置
            parser: 文本查询解析器
        """
        self.store = store
        self.registry = registry
        self.engine = engine
        self.config = config
        self.parser = parser or QueryParser(config.query)
        self.session_id = str(uuid.uuid4())
        self.closed = False

        logger.debug(f"会话已打开: {self.session_id}")

    def _ensure_open(self):
        if self.closed:
            raise SessionClosed(f"会话已关闭: {self.session_id}")

    def _default_context(self) -> StrategyContext:
        return StrategyContext.from_value(self.config.loading.default_strategy)

    def _effective_limit(self, limit: Optional[int]) -> Optional[int]:
        if limit is not None and limit < 0:
            raise QuerySyntaxError(f"结果数量上限不能为负数: {limit}")
        if limit is None:
            limit = self.config.query.default_limit
        if limit is None:
            return None
        return min(limit, self.config.query.max_limit)

    async def query(self,
                    entity_type: str,
                    predicate: Predicate = None,
                    context: Union[StrategyContext, str, None] = None,
                    limit: Optional[int] = None) -> List[Entity]:
        """
        执行查询

        加载计划在访问存储之前校验；eager 策略下所有计划路径
        在返回前解析完毕。

        Args:
            entity_type: 根实体类型
            predicate: None、字段等值字典或以行为参数的可调用对象
            context: 策略上下文或策略名，默认取配置
            limit: 结果数量上限

        Returns:
            按主键升序的实体列表
        """
        try:
            self._ensure_open()
            context = StrategyContext.from_value(context) if context is not None else self._default_context()

            # 先校验，再访问存储
            plan_tree = self.engine.compile_plan(entity_type, context)
            lookup = self._plan_lookup(entity_type, predicate)
            limit = self._effective_limit(limit)

            rows = await self._fetch_rows(entity_type, lookup)
            if limit is not None:
                rows = rows[:limit]

            entities = [self.engine.materialize(entity_type, row, context.strategy, self) for row in rows]
            await self.engine.load(entities, context, plan_tree, self)

            logger.info(f"查询执行完成: {entity_type}，策略: {context.strategy.value}，返回 {len(entities)} 条结果")
            return entities

        except Exception as e:
            logger.error(f"查询执行失败: {e}")
            raise

    async def get(self, entity_type: str, entity_id: Any,
                  context: Union[StrategyContext, str, None] = None) -> Optional[Entity]:
        """按主键获取单个实体，不存在时返回 None"""
        primary_key = self.registry.entity_type(entity_type).primary_key
        entities = await self.query(entity_type, {primary_key: entity_id}, context)
        return entities[0] if entities else None

    async def resolve(self, entity: Entity, field_path: str) -> Any:
        """
        按需解析实体的关系路径

        Args:
            entity: 本会话生成的实体
            field_path: 关系路径

        Returns:
            实体自身第一段字段的值
        """
        try:
            self._ensure_open()
            if not entity.belongs_to(self):
                raise ResolutionNotAllowed(f"{entity!r} 不属于当前会话")
            return await self.engine.resolve(entity, field_path)
        except Exception as e:
            logger.error(f"解析关系失败: {field_path}: {e}")
            raise

    async def execute(self, query: Union[str, Dict[str, Any]]) -> List[Entity]:
        """
        执行文本查询或查询对象

        Args:
            query: 查询语句，或包含 entity_type/predicate/context/limit 的字典
        """
        if isinstance(query, str):
            if not self.config.query.enable_text_queries:
                raise QuerySyntaxError("文本查询已禁用")
            parsed_query = self.parser.parse(query)
        else:
            parsed_query = query

        if 'entity_type' not in parsed_query:
            raise QuerySyntaxError("查询对象缺少 entity_type")

        return await self.query(
            parsed_query['entity_type'],
            parsed_query.get('predicate'),
            parsed_query.get('context'),
            parsed_query.get('limit')
        )

    def _plan_lookup(self, entity_type: str, predicate: Predicate) -> Dict[str, Any]:
        """选择存储访问方式，不访问存储"""
        schema = self.registry.entity_type(entity_type)

        if predicate is None:
            return {'mode': 'all', 'filter': None}

        if callable(predicate):
            return {'mode': 'all', 'filter': predicate}

        if not isinstance(predicate, dict):
            raise QuerySyntaxError(f"不支持的查询条件类型: {type(predicate).__name__}")

        unknown = [name for name in predicate if name not in schema.fields]
        if unknown:
            raise QuerySyntaxError(f"查询条件引用了 {entity_type} 的未知字段: {', '.join(unknown)}")

        if not predicate:
            return {'mode': 'all', 'filter': None}

        conditions = dict(predicate)
        if schema.primary_key in conditions:
            return {
                'mode': 'id',
                'value': conditions.pop(schema.primary_key),
                'filter': self._equality_filter(conditions)
            }

        field_name = next(iter(conditions))
        return {
            'mode': 'field',
            'field': field_name,
            'value': conditions.pop(field_name),
            'filter': self._equality_filter(conditions)
        }

    @staticmethod
    def _equality_filter(conditions: Dict[str, Any]) -> Optional[Callable[[Dict[str, Any]], bool]]:
        if not conditions:
            return None
        return lambda row: all(row.get(name) == value for name, value in conditions.items())

    async def _fetch_rows(self, entity_type: str, lookup: Dict[str, Any]) -> List[Dict[str, Any]]:
        mode = lookup['mode']
        if mode == 'id':
            row = await self.store.fetch_by_id(entity_type, lookup['value'])
            rows = [row] if row is not None else []
        elif mode == 'field':
            rows = await self.store.fetch_by_foreign_key(entity_type, lookup['field'], lookup['value'])
        else:
            rows = await self.store.fetch_all(entity_type)

        if lookup['filter'] is not None:
            rows = [row for row in rows if lookup['filter'](row)]
        return rows

    async def close(self):
        """关闭会话"""
        if not self.closed:
            self.closed = True
            logger.debug(f"会话已关闭: {self.session_id}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
