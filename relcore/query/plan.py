"""
加载计划模块 - 不可变的加载计划与策略上下文
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Any, Optional, Tuple, Union

from ..core.errors import InvalidLoadPlan
from ..core.registry import RelationRegistry, RelationshipDescriptor


class LoadingStrategy(str, Enum):
    """关系加载策略"""
    DEFERRED = "deferred"
    EAGER = "eager"
    IMPLICIT = "implicit"


@dataclass
class PlanNode:
    """编译后的计划树节点；根节点没有描述符"""
    descriptor: Optional[RelationshipDescriptor] = None
    children: Dict[str, "PlanNode"] = field(default_factory=dict)

    @property
    def field_name(self) -> Optional[str]:
        return self.descriptor.field_name if self.descriptor else None

    def walk(self, prefix: str = "") -> List[str]:
        """按深度优先返回所有路径"""
        paths = []
        for name, child in self.children.items():
            path = f"{prefix}.{name}" if prefix else name
            paths.append(path)
            paths.extend(child.walk(path))
        return paths


@dataclass(frozen=True)
class LoadPlan:
    """
    加载计划 - 有序的关系路径序列，例如 ("department", "department.manager")

    构造后不可变；通过 compile() 对照注册表校验。
    """
    paths: Tuple[str, ...] = ()

    def __post_init__(self):
        raw = (self.paths,) if isinstance(self.paths, str) else tuple(self.paths)
        normalized = []
        for path in raw:
            if not isinstance(path, str):
                raise InvalidLoadPlan(f"加载路径必须是字符串: {path!r}")
            path = path.strip()
            segments = path.split(".")
            if not path or any(not segment.strip() for segment in segments):
                raise InvalidLoadPlan(f"加载路径格式错误: {path!r}")
            path = ".".join(segment.strip() for segment in segments)
            if path not in normalized:
                normalized.append(path)
        object.__setattr__(self, 'paths', tuple(normalized))

    @classmethod
    def of(cls, *paths: str) -> "LoadPlan":
        return cls(tuple(paths))

    @classmethod
    def parse(cls, text: str) -> "LoadPlan":
        """解析逗号分隔的路径列表"""
        if not text or not text.strip():
            return cls()
        return cls(tuple(part for part in text.split(",")))

    def __iter__(self):
        return iter(self.paths)

    def __len__(self):
        return len(self.paths)

    def __bool__(self):
        return bool(self.paths)

    def compile(self,
                registry: RelationRegistry,
                root_type: str,
                include_parent_paths: bool = True,
                max_depth: int = 5) -> PlanNode:
        """
        对照注册表校验并编译为计划树

        Args:
            registry: 关系注册表
            root_type: 根实体类型
            include_parent_paths: 为 False 时 a.b 要求计划中显式包含 a
            max_depth: 最大路径深度

        Returns:
            计划树根节点

        Raises:
            UnknownEntityType: 根类型未声明
            UnknownRelation: 路径中某段未声明
            InvalidLoadPlan: 路径不从根类型出发、缺少父路径或超出深度
        """
        root_relations = registry.relations_of(root_type)
        root = PlanNode()

        relative_paths = [self._relative_segments(registry, root_type, root_relations, path)
                          for path in self.paths]
        explicit = {".".join(segments) for segments in relative_paths}

        for path, segments in zip(self.paths, relative_paths):
            if len(segments) > max_depth:
                raise InvalidLoadPlan(f"加载路径 {path} 深度 {len(segments)} 超过上限 {max_depth}")

            node = root
            current_type = root_type
            for segment in segments:
                descriptor = registry.describe(current_type, segment)
                child = node.children.get(segment)
                if child is None:
                    child = PlanNode(descriptor=descriptor)
                    node.children[segment] = child
                node = child
                current_type = descriptor.target_type

            if not include_parent_paths:
                for end in range(1, len(segments)):
                    parent = ".".join(segments[:end])
                    if parent not in explicit:
                        raise InvalidLoadPlan(f"加载路径 {path} 的父路径 {parent} 未包含在计划中")

        return root

    @staticmethod
    def _relative_segments(registry: RelationRegistry, root_type: str,
                           root_relations, path: str) -> List[str]:
        """去掉可选的根类型前缀，例如 Employee.department -> department"""
        segments = path.split(".")
        head = segments[0]
        if len(segments) > 1 and head not in root_relations and registry.has_type(head):
            if head != root_type:
                raise InvalidLoadPlan(f"加载路径 {path} 不是从根类型 {root_type} 出发")
            segments = segments[1:]
        return segments


@dataclass(frozen=True)
class StrategyContext:
    """
    策略上下文 - 每次查询选择的加载策略，预加载时附带加载计划
    """
    strategy: LoadingStrategy = LoadingStrategy.DEFERRED
    plan: LoadPlan = field(default_factory=LoadPlan)

    def __post_init__(self):
        try:
            strategy = LoadingStrategy(self.strategy)
        except ValueError:
            raise InvalidLoadPlan(f"未知的加载策略: {self.strategy}")
        object.__setattr__(self, 'strategy', strategy)

        plan = self.plan
        if plan is None:
            plan = LoadPlan()
        elif isinstance(plan, str):
            plan = LoadPlan.parse(plan)
        elif not isinstance(plan, LoadPlan):
            plan = LoadPlan(tuple(plan))
        object.__setattr__(self, 'plan', plan)

        if plan and strategy is not LoadingStrategy.EAGER:
            raise InvalidLoadPlan(f"加载计划仅适用于 eager 策略，当前策略: {strategy.value}")

    @classmethod
    def deferred(cls) -> "StrategyContext":
        return cls(LoadingStrategy.DEFERRED)

    @classmethod
    def eager(cls, *paths: Union[str, LoadPlan]) -> "StrategyContext":
        if len(paths) == 1 and isinstance(paths[0], LoadPlan):
            return cls(LoadingStrategy.EAGER, paths[0])
        return cls(LoadingStrategy.EAGER, LoadPlan(tuple(paths)))

    @classmethod
    def implicit(cls) -> "StrategyContext":
        return cls(LoadingStrategy.IMPLICIT)

    @classmethod
    def from_value(cls, value: Any) -> "StrategyContext":
        """从字符串或上下文构造"""
        if isinstance(value, StrategyContext):
            return value
        return cls(value)
