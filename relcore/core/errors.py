"""
错误定义模块 - 关系加载引擎的异常体系

NotFound 不是异常：存储返回 None，关系字段进入 ABSENT 状态。
"""


class RelCoreError(Exception):
    """RelationCoreDB 异常基类"""
    pass


class UnknownEntityType(RelCoreError):
    """实体类型未在注册表中声明"""

    def __init__(self, entity_type: str):
        self.entity_type = entity_type
        super().__init__(f"未知的实体类型: {entity_type}")


class UnknownRelation(RelCoreError):
    """关系字段未在注册表中声明"""

    def __init__(self, entity_type: str, field_name: str):
        self.entity_type = entity_type
        self.field_name = field_name
        super().__init__(f"未知的关系字段: {entity_type}.{field_name}")


class InvalidLoadPlan(RelCoreError):
    """加载计划无效"""
    pass


class RegistryError(RelCoreError):
    """注册表配置错误，或冻结后修改"""
    pass


class StoreUnavailable(RelCoreError):
    """实体存储不可用（I/O 失败或已关闭）"""
    pass


class SessionClosed(StoreUnavailable):
    """会话已关闭，无法继续解析关系字段"""
    pass


class ResolutionNotAllowed(RelCoreError):
    """当前加载策略不允许按需解析"""
    pass


class QuerySyntaxError(RelCoreError):
    """查询语句无法解析"""
    pass
