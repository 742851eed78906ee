"""
配置管理模块
"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass
from pathlib import Path
import yaml
from dotenv import load_dotenv

load_dotenv()


@dataclass
class StorageConfig:
    """存储配置"""
    backend: str = "memory"  # memory, json
    data_dir: str = "data"
    entity_store_dir: str = "data/entities"

    # 默认主键字段
    primary_key: str = "id"


@dataclass
class LoadingConfig:
    """关系加载配置"""
    default_strategy: str = "deferred"  # deferred, eager, implicit

    # 预加载时并发获取兄弟路径
    eager_concurrency: bool = True

    # 自动补全父路径：department.manager 隐含 department
    include_parent_paths: bool = True

    # 加载路径最大深度
    max_plan_depth: int = 5


@dataclass
class QueryConfig:
    """查询配置"""
    enable_text_queries: bool = True

    # 结果限制
    default_limit: Optional[int] = None
    max_limit: int = 10000


class Config:
    """主配置类"""

    def __init__(self,
                 storage: StorageConfig = None,
                 loading: LoadingConfig = None,
                 query: QueryConfig = None,
                 schema: Dict[str, Any] = None):
        """初始化配置"""
        self.storage = storage or StorageConfig()
        self.loading = loading or LoadingConfig()
        self.query = query or QueryConfig()
        self.schema = schema or {"entities": {}}

    @classmethod
    def from_file(cls, config_path: str) -> "Config":
        """从配置文件加载配置"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"配置文件不存在: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "Config":
        """从字典创建配置"""
        storage_config = StorageConfig(**config_data.get("storage", {}))
        loading_config = LoadingConfig(**config_data.get("loading", {}))
        query_config = QueryConfig(**config_data.get("query", {}))

        return cls(
            storage=storage_config,
            loading=loading_config,
            query=query_config,
            schema=config_data.get("schema")
        )

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "storage": dict(self.storage.__dict__),
            "loading": dict(self.loading.__dict__),
            "query": dict(self.query.__dict__),
            "schema": self.schema
        }

    def save_to_file(self, config_path: str):
        """保存配置到文件"""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)


# 默认配置
DEFAULT_CONFIG = Config()

# 环境变量配置
def load_config_from_env() -> Config:
    """从环境变量加载配置"""
    config = Config()

    # 存储配置
    if os.getenv("RCDB_STORAGE_BACKEND"):
        config.storage.backend = os.getenv("RCDB_STORAGE_BACKEND")
    if os.getenv("RCDB_DATA_DIR"):
        config.storage.data_dir = os.getenv("RCDB_DATA_DIR")
        config.storage.entity_store_dir = str(Path(config.storage.data_dir) / "entities")
    if os.getenv("RCDB_ENTITY_STORE_DIR"):
        config.storage.entity_store_dir = os.getenv("RCDB_ENTITY_STORE_DIR")

    # 加载配置
    if os.getenv("RCDB_DEFAULT_STRATEGY"):
        config.loading.default_strategy = os.getenv("RCDB_DEFAULT_STRATEGY").lower()
    if os.getenv("RCDB_EAGER_CONCURRENCY"):
        config.loading.eager_concurrency = os.getenv("RCDB_EAGER_CONCURRENCY").lower() == "true"
    if os.getenv("RCDB_INCLUDE_PARENT_PATHS"):
        config.loading.include_parent_paths = os.getenv("RCDB_INCLUDE_PARENT_PATHS").lower() == "true"
    if os.getenv("RCDB_MAX_PLAN_DEPTH"):
        config.loading.max_plan_depth = int(os.getenv("RCDB_MAX_PLAN_DEPTH"))

    # 查询配置
    if os.getenv("RCDB_ENABLE_TEXT_QUERIES"):
        config.query.enable_text_queries = os.getenv("RCDB_ENABLE_TEXT_QUERIES").lower() == "true"
    if os.getenv("RCDB_MAX_LIMIT"):
        config.query.max_limit = int(os.getenv("RCDB_MAX_LIMIT"))

    # 模式文件
    if os.getenv("RCDB_SCHEMA_FILE"):
        with open(os.getenv("RCDB_SCHEMA_FILE"), 'r', encoding='utf-8') as f:
            config.schema = yaml.safe_load(f) or {"entities": {}}

    return config
