"""
加载策略引擎 - 按策略填充（或推迟填充）实体的关系字段
"""

import asyncio
from typing import Dict, List, Any, Tuple

from loguru import logger

from ..core.config import LoadingConfig
from ..core.entity import Entity, LazyEntity
from ..core.errors import ResolutionNotAllowed
from ..core.registry import RelationRegistry, RelationshipDescriptor, Cardinality
from ..storage.base import EntityStore
from .plan import LoadPlan, LoadingStrategy, PlanNode, StrategyContext


class LoadingStrategyEngine:
    """
    加载策略引擎

    - deferred：根查询只填充标量字段，关系字段由 resolve() 按需解析
    - eager：按加载计划在根查询内批量解析，结果全部获取成功后才写入实体
    - implicit：首次读取关系字段时透明解析
    """

    def __init__(self, store: EntityStore, registry: RelationRegistry, config: LoadingConfig):
        """
        初始化加载策略引擎

        Args:
            store: 实体存储
            registry: 关系注册表
            config: 加载配置
        """
        self.store = store
        self.registry = registry
        self.config = config

        logger.info("加载策略引擎初始化完成")

    def materialize(self, entity_type: str, row: Dict[str, Any],
                    strategy: LoadingStrategy, session: Any) -> Entity:
        """由存储行生成实体，所有关系字段初始为 UNRESOLVED"""
        schema = self.registry.entity_type(entity_type)
        relations = self.registry.relations_of(entity_type)
        entity_class = LazyEntity if strategy is LoadingStrategy.IMPLICIT else Entity
        return entity_class(schema, row, relations, strategy, session)

    def compile_plan(self, entity_type: str, context: StrategyContext) -> PlanNode:
        """校验并编译加载计划，不访问存储"""
        return context.plan.compile(
            self.registry,
            entity_type,
            include_parent_paths=self.config.include_parent_paths,
            max_depth=self.config.max_plan_depth
        )

    async def load(self, roots: List[Entity], context: StrategyContext,
                   plan_tree: PlanNode, session: Any):
        """
        对根实体应用加载策略

        deferred 和 implicit 在此不做任何获取。
        """
        if context.strategy is not LoadingStrategy.EAGER or not plan_tree.children or not roots:
            return

        staged: List[Tuple[Entity, str, Any]] = []
        await self._load_level(roots, plan_tree, session, staged)

        # 所有路径获取成功后统一写入
        for entity, field_name, value in staged:
            entity.slot(field_name).settle(value)

        logger.debug(f"预加载完成，根实体数: {len(roots)}，写入关系字段数: {len(staged)}")

    async def resolve(self, entity: Entity, field_path: str) -> Any:
        """
        按需解析关系路径

        先解析实体自身的第一段字段，再在到达的实体上解析其余各段。
        重复调用直接返回已解析的值，不再访问存储。

        Args:
            entity: 实体
            field_path: 关系路径，例如 department 或 department.manager

        Returns:
            实体自身第一段字段的值
        """
        plan = LoadPlan.of(field_path)
        tree = plan.compile(self.registry, entity.entity_type,
                            include_parent_paths=True, max_depth=self.config.max_plan_depth)
        return await self._resolve_node(entity, tree)

    async def _resolve_node(self, entity: Entity, node: PlanNode) -> Any:
        value = None
        for field_name, child in node.children.items():
            value = await self.resolve_field(entity, field_name)
            if child.children:
                for related in self._as_entities(value):
                    await self._resolve_node(related, child)
        return value

    async def resolve_field(self, entity: Entity, field_name: str) -> Any:
        """
        解析单个关系字段，每个字段只获取一次

        Raises:
            UnknownRelation: 字段未声明
            ResolutionNotAllowed: 实体由 eager 策略生成
            SessionClosed: 所属会话已关闭
            StoreUnavailable: 存储获取失败，字段保持 UNRESOLVED
        """
        slot = entity.slot(field_name)
        if slot.resolved:
            return slot.value

        if entity.strategy is LoadingStrategy.EAGER:
            raise ResolutionNotAllowed(
                f"{entity!r}.{field_name} 不在加载计划中，eager 实体不支持按需解析"
            )

        session = entity.session
        async with slot.lock:
            # 并发读取者等待同一次获取
            if slot.resolved:
                return slot.value

            value = await self._fetch_relation(entity, slot.descriptor, entity.strategy, session)
            slot.settle(value)

        logger.debug(f"关系字段已解析: {entity!r}.{field_name} -> {slot.state.value}")
        return slot.value

    async def _fetch_relation(self, entity: Entity, descriptor: RelationshipDescriptor,
                              strategy: LoadingStrategy, session: Any) -> Any:
        """为单个实体获取关系数据"""
        if descriptor.cardinality is Cardinality.ONE:
            foreign_key = entity[descriptor.foreign_key_field]
            if foreign_key is None:
                return None
            row = await self.store.fetch_by_id(descriptor.target_type, foreign_key)
            if row is None:
                return None
            return self.materialize(descriptor.target_type, row, strategy, session)

        rows = await self.store.fetch_by_foreign_key(
            descriptor.target_type, descriptor.foreign_key_field, entity.id
        )
        return [self.materialize(descriptor.target_type, row, strategy, session) for row in rows]

    async def _load_level(self, parents: List[Entity], node: PlanNode,
                          session: Any, staged: List[Tuple[Entity, str, Any]]):
        """加载同一层级的所有兄弟路径"""
        children = list(node.children.values())

        if self.config.eager_concurrency and len(children) > 1:
            results = await asyncio.gather(
                *(self._load_branch(parents, child, session, staged) for child in children),
                return_exceptions=True
            )
            for result in results:
                if isinstance(result, BaseException):
                    raise result
        else:
            for child in children:
                await self._load_branch(parents, child, session, staged)

    async def _load_branch(self, parents: List[Entity], node: PlanNode,
                           session: Any, staged: List[Tuple[Entity, str, Any]]):
        """批量获取一条路径段，再深度优先加载其子路径"""
        descriptor = node.descriptor
        field_name = descriptor.field_name

        pending = [p for p in parents if not p.slot(field_name).resolved]
        reached: List[Entity] = []

        for parent in parents:
            if parent.slot(field_name).resolved:
                reached.extend(self._as_entities(parent.slot(field_name).value))

        if pending:
            fetched = await self._batch_fetch(pending, descriptor, session)
            for parent, value in fetched:
                staged.append((parent, field_name, value))
                reached.extend(self._as_entities(value))

        if node.children and reached:
            await self._load_level(self._unique(reached), node, session, staged)

    async def _batch_fetch(self, parents: List[Entity], descriptor: RelationshipDescriptor,
                           session: Any) -> List[Tuple[Entity, Any]]:
        """一次往返获取所有父实体的关系数据"""
        target_type = descriptor.target_type

        if descriptor.cardinality is Cardinality.ONE:
            keys = [p[descriptor.foreign_key_field] for p in parents]
            wanted = [key for key in keys if key is not None]
            rows = await self.store.fetch_by_ids(target_type, wanted) if wanted else {}

            # 同一目标行在本次加载中只生成一个实体
            related = {
                key: self.materialize(target_type, row, LoadingStrategy.EAGER, session)
                for key, row in rows.items()
            }
            return [(parent, related.get(key) if key is not None else None)
                    for parent, key in zip(parents, keys)]

        grouped = await self.store.fetch_by_foreign_keys(
            target_type, descriptor.foreign_key_field, [p.id for p in parents]
        )
        return [
            (parent, [self.materialize(target_type, row, LoadingStrategy.EAGER, session)
                      for row in grouped.get(parent.id, [])])
            for parent in parents
        ]

    @staticmethod
    def _as_entities(value: Any) -> List[Entity]:
        if value is None or not isinstance(value, (Entity, list)):
            return []
        return value if isinstance(value, list) else [value]

    @staticmethod
    def _unique(entities: List[Entity]) -> List[Entity]:
        seen = {}
        for entity in entities:
            seen.setdefault(id(entity), entity)
        return list(seen.values())
