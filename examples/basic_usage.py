"""
RelationCoreDB 基本使用示例
"""

import asyncio
from pathlib import Path

# 添加项目根目录到 Python 路径
import sys
sys.path.append(str(Path(__file__).parent.parent))

from relcore.core.database import RelationCoreDB
from relcore.core.config import Config
from relcore.query.plan import StrategyContext


SCHEMA = {
    "entities": {
        "Employee": {
            "fields": ["name", "departmentId"],
            "relations": {
                "department": {"cardinality": "one", "target": "Department", "foreign_key": "departmentId"}
            }
        },
        "Department": {
            "fields": ["name", "headId"],
            "relations": {
                "employees": {"cardinality": "many", "target": "Employee", "foreign_key": "departmentId"},
                "head": {"cardinality": "one", "target": "Employee", "foreign_key": "headId"}
            }
        }
    }
}


async def basic_example():
    """基本使用示例"""
    print("=== RelationCoreDB 基本使用示例 ===\n")

    # 初始化数据库
    config = Config(schema=SCHEMA)
    db = RelationCoreDB(config)

    try:
        # 1. 插入数据
        print("1. 插入数据...")
        await db.insert("Department", {"id": 10, "name": "Eng", "headId": 1})
        await db.insert("Department", {"id": 20, "name": "Ops", "headId": None})
        await db.insert_many("Employee", [
            {"id": 1, "name": "张三", "departmentId": 10},
            {"id": 2, "name": "李四", "departmentId": 10},
            {"id": 3, "name": "王五", "departmentId": None},
        ])

        # 实体只弱引用会话：解析关系期间要持有会话，这里用 async with
        async with db.session() as session:
            # 2. 按需加载
            print("\n2. 按需加载 (deferred)...")
            employee = await session.get("Employee", 1, StrategyContext.deferred())
            print(f"  department 状态: {employee.relation_state('department').value}")
            department = await session.resolve(employee, "department")
            print(f"  解析后: {department.name}，状态: {employee.relation_state('department').value}")

            # 3. 预加载
            print("\n3. 预加载 (eager)...")
            departments = await session.query(
                "Department", None, StrategyContext.eager("employees", "head")
            )
            for dept in departments:
                names = [e.name for e in dept.employees]
                head = dept.head.name if dept.head else "无"
                print(f"  {dept.name}: 员工 {names}，负责人 {head}")

            # 4. 隐式加载
            print("\n4. 隐式加载 (implicit)...")
            employee = await session.get("Employee", 2, StrategyContext.implicit())
            department = await employee.department
            print(f"  {employee.name} -> {department.name}")

            # 5. 文本查询
            print("\n5. 文本查询...")
            results = await session.execute("FROM Employee WHERE departmentId = 10 INCLUDE department.head")
            for result in results:
                print(f"  {result.to_dict()}")

        # 6. 获取数据库统计信息
        print("\n6. 获取数据库统计信息...")
        stats = await db.get_statistics()
        print(f"  - 存储往返次数: {stats['storage_stats']['fetch_count']}")
        print(f"  - 关系数: {stats['registry_stats']['total_relations']}")

    except Exception as e:
        print(f"示例执行失败: {e}")

    finally:
        # 关闭数据库
        await db.close()


if __name__ == "__main__":
    asyncio.run(basic_example())
