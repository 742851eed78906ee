"""
实体模块 - 实体记录与关系字段状态
"""

import asyncio
import weakref
from enum import Enum
from typing import Dict, List, Any, Optional, Mapping

from .errors import SessionClosed, UnknownRelation
from .registry import EntityType, RelationshipDescriptor


class RelationState(str, Enum):
    """关系字段状态：UNRESOLVED -> {ABSENT, PRESENT}，解析后不再变化"""
    UNRESOLVED = "unresolved"
    ABSENT = "absent"
    PRESENT = "present"


class _Unresolved:
    """未解析哨兵"""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "<UNRESOLVED>"

    def __bool__(self):
        return False


UNRESOLVED = _Unresolved()


class RelationSlot:
    """
    单个关系字段的解析状态
    """

    def __init__(self, descriptor: RelationshipDescriptor):
        self.descriptor = descriptor
        self.state = RelationState.UNRESOLVED
        self.value: Any = UNRESOLVED
        self._lock: Optional[asyncio.Lock] = None

    @property
    def lock(self) -> asyncio.Lock:
        # 在首次使用时创建，绑定到当前事件循环
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def resolved(self) -> bool:
        return self.state is not RelationState.UNRESOLVED

    def settle(self, value: Any) -> bool:
        """
        写入解析结果

        Args:
            value: ONE 关系为实体或 None，MANY 关系为实体列表

        Returns:
            是否发生状态迁移（已解析的字段保持不变）
        """
        if self.resolved:
            return False

        if self.descriptor.is_collection:
            # 空集合也是 PRESENT
            self.value = list(value or [])
            self.state = RelationState.PRESENT
        elif value is None:
            self.value = None
            self.state = RelationState.ABSENT
        else:
            self.value = value
            self.state = RelationState.PRESENT
        return True


class Entity:
    """
    实体 - 标量字段加关系字段

    实体记住自己的类型，并以弱引用持有生成它的会话。
    """

    def __init__(self,
                 schema: EntityType,
                 row: Dict[str, Any],
                 relations: Mapping[str, RelationshipDescriptor],
                 strategy: Any = None,
                 session: Any = None):
        """
        初始化实体

        Args:
            schema: 实体类型
            row: 存储返回的行
            relations: 该类型的关系描述符
            strategy: 生成该实体的加载策略
            session: 所属会话
        """
        object.__setattr__(self, '_schema', schema)
        object.__setattr__(self, '_fields', {name: row.get(name) for name in schema.fields})
        object.__setattr__(self, '_slots', {name: RelationSlot(d) for name, d in relations.items()})
        object.__setattr__(self, '_strategy', strategy)
        object.__setattr__(self, '_session_ref', weakref.ref(session) if session is not None else None)

    def __getattr__(self, name: str) -> Any:
        fields = self.__dict__.get('_fields')
        if fields is not None and name in fields:
            return fields[name]

        slots = self.__dict__.get('_slots')
        if slots is not None and name in slots:
            return self._read_relation(slots[name])

        raise AttributeError(f"{type(self).__name__} 没有字段: {name}")

    def __setattr__(self, name: str, value: Any):
        raise AttributeError(f"实体字段只读: {name}")

    def __getitem__(self, name: str) -> Any:
        if name in self._fields:
            return self._fields[name]
        return self.slot(name).value

    def __contains__(self, name: str) -> bool:
        return name in self._fields or name in self._slots

    def __repr__(self):
        return f"{self.entity_type}({self._schema.primary_key}={self.id!r})"

    def _read_relation(self, slot: RelationSlot) -> Any:
        return slot.value

    @property
    def entity_type(self) -> str:
        return self._schema.name

    @property
    def schema(self) -> EntityType:
        return self._schema

    @property
    def id(self) -> Any:
        return self._fields.get(self._schema.primary_key)

    @property
    def strategy(self) -> Any:
        return self._strategy

    @property
    def fields(self) -> Dict[str, Any]:
        """标量字段副本"""
        return dict(self._fields)

    @property
    def relation_names(self) -> List[str]:
        return list(self._slots)

    @property
    def session(self) -> Any:
        """
        获取所属会话

        Raises:
            SessionClosed: 会话已关闭或已被回收
        """
        session = self._session_ref() if self._session_ref is not None else None
        if session is None or session.closed:
            raise SessionClosed(f"{self!r} 所属会话已关闭")
        return session

    def belongs_to(self, session: Any) -> bool:
        return self._session_ref is not None and self._session_ref() is session

    def slot(self, name: str) -> RelationSlot:
        """获取关系字段状态"""
        slot = self._slots.get(name)
        if slot is None:
            raise UnknownRelation(self.entity_type, name)
        return slot

    def relation_state(self, name: str) -> RelationState:
        return self.slot(name).state

    def is_resolved(self, name: str) -> bool:
        return self.slot(name).resolved

    def to_dict(self, include_relations: bool = True, _seen: Optional[set] = None) -> Dict[str, Any]:
        """
        转换为字典

        未解析的关系字段不输出；已访问过的实体只输出主键，避免循环。
        """
        data = dict(self._fields)
        if not include_relations:
            return data

        seen = _seen if _seen is not None else set()
        seen.add(id(self))

        for name, slot in self._slots.items():
            if not slot.resolved:
                continue
            if slot.value is None:
                data[name] = None
            elif slot.descriptor.is_collection:
                data[name] = [self._nested_dict(item, seen) for item in slot.value]
            else:
                data[name] = self._nested_dict(slot.value, seen)

        return data

    @staticmethod
    def _nested_dict(entity: "Entity", seen: set) -> Dict[str, Any]:
        if id(entity) in seen:
            return {entity.schema.primary_key: entity.id}
        return entity.to_dict(True, seen)


class LazyRelation:
    """
    惰性关系代理 - 首次 await 时解析字段，之后返回缓存值
    """

    def __init__(self, entity: "LazyEntity", field_name: str):
        self.entity = entity
        self.field_name = field_name

    @property
    def state(self) -> RelationState:
        return self.entity.relation_state(self.field_name)

    async def load(self) -> Any:
        slot = self.entity.slot(self.field_name)
        if slot.resolved:
            return slot.value
        session = self.entity.session
        return await session.engine.resolve_field(self.entity, self.field_name)

    def __await__(self):
        return self.load().__await__()

    def __repr__(self):
        return f"<LazyRelation {self.entity!r}.{self.field_name} {self.state.value}>"


class LazyEntity(Entity):
    """隐式加载实体：读取关系字段返回可等待的代理"""

    def _read_relation(self, slot: RelationSlot) -> Any:
        return LazyRelation(self, slot.descriptor.field_name)
