"""
测试公共夹具
"""

import sys
from pathlib import Path

import pytest_asyncio

# 添加项目根目录到 Python 路径
sys.path.append(str(Path(__file__).parent.parent))

from relcore.core.config import Config
from relcore.core.database import RelationCoreDB


SCHEMA = {
    "entities": {
        "Employee": {
            "primary_key": "id",
            "fields": ["name", "departmentId"],
            "relations": {
                "department": {"cardinality": "one", "target": "Department", "foreign_key": "departmentId"}
            }
        },
        "Department": {
            "primary_key": "id",
            "fields": ["name", "headId"],
            "relations": {
                "employees": {"cardinality": "many", "target": "Employee", "foreign_key": "departmentId"},
                "head": {"cardinality": "one", "target": "Employee", "foreign_key": "headId"}
            }
        }
    }
}


async def seed(db: RelationCoreDB):
    """写入测试数据，员工故意乱序插入"""
    await db.insert("Department", {"id": 10, "name": "Eng", "headId": 2})
    await db.insert("Department", {"id": 20, "name": "Empty", "headId": None})
    await db.insert_many("Employee", [
        {"id": 3, "name": "Cid", "departmentId": 10},
        {"id": 1, "name": "Ann", "departmentId": 10},
        {"id": 2, "name": "Bob", "departmentId": 10},
        {"id": 4, "name": "Dan", "departmentId": None},
        {"id": 5, "name": "Eve", "departmentId": 99},
    ])
    db.store.reset_statistics()


@pytest_asyncio.fixture
async def db():
    """内存数据库，已写入测试数据"""
    database = RelationCoreDB(Config(schema=SCHEMA))
    await seed(database)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def session(db):
    """查询会话"""
    async with db.session() as s:
        yield s
