"""
RelationCoreDB 主数据库类
"""

import uuid
import weakref
from typing import Dict, List, Any, Optional
from pathlib import Path
from datetime import datetime

from loguru import logger

from .config import Config
from .registry import RelationRegistry
from ..storage import create_store
from ..query.loader import LoadingStrategyEngine
from ..query.parser import QueryParser
from ..query.session import Session


class RelationCoreDB:
    """
    关系加载数据库主类 - 组装存储、注册表与加载策略引擎
    """

    def __init__(self, config: Optional[Config] = None, registry: Optional[RelationRegistry] = None):
        """
        初始化数据库

        Args:
            config: 配置对象，如果为 None 则使用默认配置
            registry: 关系注册表，如果为 None 则由配置中的 schema 构建
        """
        self.config = config or Config()
        self.db_id = str(uuid.uuid4())

        # 初始化核心组件
        self._init_components(registry)

        logger.info(f"RelationCoreDB 初始化完成，数据库 ID: {self.db_id}")

    def _init_components(self, registry: Optional[RelationRegistry]):
        """初始化核心组件"""
        if self.config.storage.backend == "json":
            self._create_data_directories()

        # 注册表在启动时填充，之后只读
        if registry is None:
            registry = RelationRegistry.from_dict(self.config.schema, self.config.storage.primary_key)
        self.registry = registry.freeze()

        primary_keys = {name: t.primary_key for name, t in self.registry.type_index.items()}
        self.store = create_store(self.config.storage, primary_keys)

        self.engine = LoadingStrategyEngine(self.store, self.registry, self.config.loading)
        self.query_parser = QueryParser(self.config.query)

        self.sessions = weakref.WeakSet()

        logger.info("核心组件初始化完成")

    def _create_data_directories(self):
        """创建数据目录"""
        directories = [
            self.config.storage.data_dir,
            self.config.storage.entity_store_dir,
        ]

        for directory in directories:
            Path(directory).mkdir(parents=True, exist_ok=True)

    def session(self) -> Session:
        """
        打开新的查询会话

        数据库只以弱引用跟踪会话，实体也只弱引用会话；需要继续解析
        关系时，调用方必须持有返回的会话。
        """
        session = Session(self.store, self.registry, self.engine, self.config, self.query_parser)
        self.sessions.add(session)
        return session

    async def insert(self, entity_type: str, row: Dict[str, Any]) -> Any:
        """
        插入一行

        Args:
            entity_type: 实体类型
            row: 行数据

        Returns:
            主键
        """
        try:
            schema = self.registry.entity_type(entity_type)
            unknown = [name for name in row if name not in schema.fields]
            if unknown:
                logger.warning(f"{entity_type} 行包含未声明字段: {', '.join(unknown)}")

            entity_id = await self.store.insert(entity_type, row)
            logger.debug(f"数据插入成功: {entity_type}({entity_id!r})")
            return entity_id

        except Exception as e:
            logger.error(f"数据插入失败: {e}")
            raise

    async def insert_many(self, entity_type: str, rows: List[Dict[str, Any]]) -> List[Any]:
        """批量插入"""
        return [await self.insert(entity_type, row) for row in rows]

    async def get_statistics(self) -> Dict[str, Any]:
        """
        获取数据库统计信息

        Returns:
            统计信息字典
        """
        return {
            "db_id": self.db_id,
            "open_sessions": sum(1 for s in self.sessions if not s.closed),
            "registry_stats": self.registry.get_statistics(),
            "storage_stats": await self.store.get_statistics(),
            "created_at": datetime.utcnow().isoformat()
        }

    async def close(self):
        """关闭数据库：关闭所有会话和存储"""
        try:
            for session in list(self.sessions):
                await session.close()
            await self.store.close()

            logger.info("数据库已关闭")
        except Exception as e:
            logger.error(f"关闭数据库失败: {e}")
            raise

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
