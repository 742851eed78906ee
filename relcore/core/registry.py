"""
关系注册表模块 - 管理实体类型与关系描述符
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Any, Optional, Tuple, Mapping
import networkx as nx
from loguru import logger

from .errors import RegistryError, UnknownEntityType, UnknownRelation


# 实体对象自身的公开属性，不能用作字段名；'id' 仅可作为主键
RESERVED_FIELD_NAMES = frozenset({
    "entity_type", "schema", "id", "strategy", "fields", "relation_names", "session",
    "belongs_to", "slot", "relation_state", "is_resolved", "to_dict",
})


def _check_field_name(owner_type: str, name: str, primary_key: Optional[str] = None):
    if not name or name.startswith("_"):
        raise RegistryError(f"无效的字段名: {owner_type}.{name!r}")
    if name in RESERVED_FIELD_NAMES and not (name == "id" and name == primary_key):
        raise RegistryError(f"字段名与实体属性冲突: {owner_type}.{name}")


class Cardinality(str, Enum):
    """关系基数"""
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class EntityType:
    """实体类型：名称、主键和标量字段"""
    name: str
    primary_key: str
    fields: Tuple[str, ...]


@dataclass(frozen=True)
class RelationshipDescriptor:
    """
    关系描述符

    ONE：foreign_key_field 位于 owner 上，指向 target 的主键。
    MANY：foreign_key_field 位于 target 上，指向 owner 的主键。
    """
    owner_type: str
    field_name: str
    cardinality: Cardinality
    target_type: str
    foreign_key_field: str

    @property
    def is_collection(self) -> bool:
        return self.cardinality is Cardinality.MANY


class RelationRegistry:
    """
    关系注册表 - 配置阶段填充，冻结后只读
    """

    def __init__(self, default_primary_key: str = "id"):
        """
        初始化注册表

        Args:
            default_primary_key: 未显式指定时使用的主键字段名
        """
        self.default_primary_key = default_primary_key

        # 关系图：节点为实体类型，边为关系字段
        self.graph = nx.MultiDiGraph()

        # 索引
        self.type_index: Dict[str, EntityType] = {}
        self.relation_index: Dict[str, Dict[str, RelationshipDescriptor]] = {}

        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self):
        if self._frozen:
            raise RegistryError("注册表已冻结，不允许修改")

    def register_type(self, name: str, primary_key: Optional[str] = None,
                      fields: Optional[List[str]] = None) -> EntityType:
        """
        注册实体类型

        Args:
            name: 类型名称
            primary_key: 主键字段
            fields: 标量字段列表（主键会自动加入）

        Returns:
            实体类型
        """
        self._check_mutable()
        if name in self.type_index:
            raise RegistryError(f"实体类型重复注册: {name}")

        primary_key = primary_key or self.default_primary_key
        scalar_fields = [primary_key] + [f for f in (fields or []) if f != primary_key]
        for field_name in scalar_fields:
            _check_field_name(name, field_name, primary_key)
        entity_type = EntityType(name=name, primary_key=primary_key, fields=tuple(scalar_fields))

        self.type_index[name] = entity_type
        self.relation_index[name] = {}
        self.graph.add_node(name, primary_key=primary_key, fields=list(scalar_fields))

        logger.debug(f"实体类型已注册: {name}")
        return entity_type

    def declare(self, owner_type: str, field_name: str, cardinality: Any,
                target_type: str, foreign_key_field: str) -> RelationshipDescriptor:
        """
        声明关系字段

        Args:
            owner_type: 所属类型
            field_name: 关系字段名
            cardinality: one 或 many
            target_type: 目标类型
            foreign_key_field: 外键字段

        Returns:
            关系描述符
        """
        self._check_mutable()
        owner = self.entity_type(owner_type)

        if field_name in self.relation_index[owner_type]:
            raise RegistryError(f"关系字段重复声明: {owner_type}.{field_name}")
        if field_name in owner.fields:
            raise RegistryError(f"关系字段与标量字段同名: {owner_type}.{field_name}")
        _check_field_name(owner_type, field_name)

        try:
            cardinality = Cardinality(cardinality)
        except ValueError:
            raise RegistryError(f"无效的关系基数: {cardinality}")

        descriptor = RelationshipDescriptor(
            owner_type=owner_type,
            field_name=field_name,
            cardinality=cardinality,
            target_type=target_type,
            foreign_key_field=foreign_key_field
        )

        self.relation_index[owner_type][field_name] = descriptor
        self.graph.add_edge(owner_type, target_type, key=field_name, descriptor=descriptor)

        logger.debug(f"关系已声明: {owner_type}.{field_name} -> {target_type} ({cardinality.value})")
        return descriptor

    def freeze(self) -> "RelationRegistry":
        """校验所有描述符并冻结注册表"""
        if self._frozen:
            return self

        for owner_type, relations in self.relation_index.items():
            for descriptor in relations.values():
                self._validate_descriptor(descriptor)

        for name, relations in self.relation_index.items():
            self.relation_index[name] = MappingProxyType(dict(relations))

        self._frozen = True
        logger.info(f"关系注册表已冻结，类型数: {len(self.type_index)}，关系数: {self.graph.number_of_edges()}")
        return self

    def _validate_descriptor(self, descriptor: RelationshipDescriptor):
        """校验单个描述符的不变式"""
        label = f"{descriptor.owner_type}.{descriptor.field_name}"

        if descriptor.target_type not in self.type_index:
            raise RegistryError(f"关系 {label} 的目标类型未注册: {descriptor.target_type}")

        if descriptor.cardinality is Cardinality.ONE:
            owner = self.type_index[descriptor.owner_type]
            if descriptor.foreign_key_field not in owner.fields:
                raise RegistryError(
                    f"关系 {label} 的外键 {descriptor.foreign_key_field} 不是 {owner.name} 的标量字段"
                )
            return

        # MANY：目标类型上必须存在以同一外键指回 owner 的 ONE 关系
        inverse = [
            d for d in self.relation_index[descriptor.target_type].values()
            if d.cardinality is Cardinality.ONE
            and d.target_type == descriptor.owner_type
            and d.foreign_key_field == descriptor.foreign_key_field
        ]
        if not inverse:
            raise RegistryError(
                f"关系 {label} 缺少反向描述符: {descriptor.target_type} 上需要以 "
                f"{descriptor.foreign_key_field} 指向 {descriptor.owner_type} 的单值关系"
            )

    def entity_type(self, name: str) -> EntityType:
        """获取实体类型"""
        entity_type = self.type_index.get(name)
        if entity_type is None:
            raise UnknownEntityType(name)
        return entity_type

    def has_type(self, name: str) -> bool:
        return name in self.type_index

    def describe(self, entity_type: str, field_name: str) -> RelationshipDescriptor:
        """
        获取关系描述符

        Raises:
            UnknownEntityType: 类型未声明
            UnknownRelation: 关系字段未声明
        """
        if entity_type not in self.relation_index:
            raise UnknownEntityType(entity_type)

        descriptor = self.relation_index[entity_type].get(field_name)
        if descriptor is None:
            raise UnknownRelation(entity_type, field_name)
        return descriptor

    def relations_of(self, entity_type: str) -> Mapping[str, RelationshipDescriptor]:
        """获取类型的全部关系字段（只读）"""
        if entity_type not in self.relation_index:
            raise UnknownEntityType(entity_type)
        return MappingProxyType(dict(self.relation_index[entity_type]))

    def reachable_types(self, entity_type: str) -> List[str]:
        """获取从某类型出发可导航到的所有类型"""
        if entity_type not in self.type_index:
            raise UnknownEntityType(entity_type)
        return sorted(nx.descendants(self.graph, entity_type))

    def get_statistics(self) -> Dict[str, Any]:
        """获取注册表统计信息"""
        cardinality_counts = {c.value: 0 for c in Cardinality}
        for _, _, data in self.graph.edges(data=True):
            cardinality_counts[data['descriptor'].cardinality.value] += 1

        return {
            'total_types': self.graph.number_of_nodes(),
            'total_relations': self.graph.number_of_edges(),
            'cardinality_distribution': cardinality_counts,
            'frozen': self._frozen
        }

    @classmethod
    def from_dict(cls, schema: Dict[str, Any], default_primary_key: str = "id") -> "RelationRegistry":
        """
        从模式字典构建已冻结的注册表

        模式格式：
            {
                "entities": {
                    "Employee": {
                        "primary_key": "id",
                        "fields": ["name", "departmentId"],
                        "relations": {
                            "department": {"cardinality": "one", "target": "Department",
                                           "foreign_key": "departmentId"}
                        }
                    }
                }
            }
        """
        registry = cls(default_primary_key=default_primary_key)
        entities = (schema or {}).get("entities", {}) or {}

        # 先注册全部类型，再声明关系
        for name, definition in entities.items():
            definition = definition or {}
            registry.register_type(name, definition.get("primary_key"), definition.get("fields", []))

        for name, definition in entities.items():
            for field_name, relation in ((definition or {}).get("relations") or {}).items():
                try:
                    registry.declare(
                        name,
                        field_name,
                        relation["cardinality"],
                        relation["target"],
                        relation["foreign_key"]
                    )
                except KeyError as e:
                    raise RegistryError(f"关系 {name}.{field_name} 缺少配置项: {e}")

        return registry.freeze()
