"""
核心模块 - 配置、注册表、实体与数据库主类
"""
from .config import Config
from .errors import (
    RelCoreError,
    UnknownEntityType,
    UnknownRelation,
    InvalidLoadPlan,
    RegistryError,
    StoreUnavailable,
    SessionClosed,
    ResolutionNotAllowed,
    QuerySyntaxError,
)
from .registry import RelationRegistry, RelationshipDescriptor, Cardinality, EntityType
from .entity import Entity, LazyEntity, RelationState, UNRESOLVED
from .database import RelationCoreDB

__all__ = [
    "Config",
    "RelCoreError",
    "UnknownEntityType",
    "UnknownRelation",
    "InvalidLoadPlan",
    "RegistryError",
    "StoreUnavailable",
    "SessionClosed",
    "ResolutionNotAllowed",
    "QuerySyntaxError",
    "RelationRegistry",
    "RelationshipDescriptor",
    "Cardinality",
    "EntityType",
    "Entity",
    "LazyEntity",
    "RelationState",
    "UNRESOLVED",
    "RelationCoreDB",
]
