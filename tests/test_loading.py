"""
加载策略测试
"""

import asyncio
import gc

import pytest

from relcore.core.config import Config, LoadingConfig
from relcore.core.database import RelationCoreDB
from relcore.core.entity import UNRESOLVED, LazyRelation, RelationState
from relcore.core.errors import (
    InvalidLoadPlan,
    ResolutionNotAllowed,
    SessionClosed,
    StoreUnavailable,
    UnknownRelation,
)
from relcore.query.plan import StrategyContext

from conftest import SCHEMA, seed


class TestDeferredStrategy:
    """按需加载测试"""

    @pytest.mark.asyncio
    async def test_relations_unresolved_after_root_fetch(self, db, session):
        """根查询后所有关系字段都是 UNRESOLVED"""
        employees = await session.query("Employee", None, StrategyContext.deferred())
        assert [e.id for e in employees] == [1, 2, 3, 4, 5]
        for employee in employees:
            assert employee.relation_state("department") is RelationState.UNRESOLVED
            assert employee.department is UNRESOLVED

        departments = await session.query("Department", None, "deferred")
        for department in departments:
            assert department.relation_state("employees") is RelationState.UNRESOLVED
            assert department.relation_state("head") is RelationState.UNRESOLVED

        assert db.store.fetch_count == 2

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, db, session):
        """重复解析返回同一对象且不再访问存储"""
        employee = await session.get("Employee", 1, StrategyContext.deferred())

        first = await session.resolve(employee, "department")
        fetches = db.store.fetch_count
        second = await session.resolve(employee, "department")

        assert first is second
        assert db.store.fetch_count == fetches

    @pytest.mark.asyncio
    async def test_scenario_employee_department(self, db, session):
        """员工 1 的部门按需解析为 Eng"""
        employee = await session.get("Employee", 1, StrategyContext.deferred())
        assert employee.relation_state("department") is RelationState.UNRESOLVED

        department = await session.resolve(employee, "department")

        assert employee.relation_state("department") is RelationState.PRESENT
        assert department.id == 10
        assert department.name == "Eng"
        assert employee.department is department

    @pytest.mark.asyncio
    async def test_collection_ordered_by_primary_key(self, session):
        """集合关系按主键升序"""
        department = await session.get("Department", 10)
        employees = await session.resolve(department, "employees")
        assert [e.id for e in employees] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_empty_collection_is_present(self, session):
        """无匹配行的集合为 PRESENT 空列表"""
        department = await session.get("Department", 20)
        employees = await session.resolve(department, "employees")
        assert employees == []
        assert department.relation_state("employees") is RelationState.PRESENT

    @pytest.mark.asyncio
    async def test_null_foreign_key_is_absent_without_fetch(self, db, session):
        """外键为空时直接进入 ABSENT，不访问存储"""
        employee = await session.get("Employee", 4)
        fetches = db.store.fetch_count

        assert await session.resolve(employee, "department") is None
        assert employee.relation_state("department") is RelationState.ABSENT
        assert db.store.fetch_count == fetches

    @pytest.mark.asyncio
    async def test_dangling_foreign_key_is_absent(self, db, session):
        """外键指向不存在的行时为 ABSENT"""
        employee = await session.get("Employee", 5)
        assert await session.resolve(employee, "department") is None
        assert employee.relation_state("department") is RelationState.ABSENT
        assert employee.department is None

    @pytest.mark.asyncio
    async def test_nested_path(self, session):
        """嵌套路径解析到达的实体"""
        employee = await session.get("Employee", 1)
        department = await session.resolve(employee, "department.head")

        assert department.id == 10
        assert department.relation_state("head") is RelationState.PRESENT
        assert department.head.name == "Bob"
        assert department.relation_state("employees") is RelationState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_unknown_field(self, db, session):
        """未声明的关系字段"""
        employee = await session.get("Employee", 1)
        fetches = db.store.fetch_count
        with pytest.raises(UnknownRelation):
            await session.resolve(employee, "manager")
        assert db.store.fetch_count == fetches

    @pytest.mark.asyncio
    async def test_store_failure_keeps_field_unresolved(self, db, session, monkeypatch):
        """存储失败时字段保持 UNRESOLVED，可再次解析"""
        employee = await session.get("Employee", 1)
        original = db.store.fetch_by_id

        async def unavailable(entity_type, entity_id):
            raise StoreUnavailable("连接中断")

        monkeypatch.setattr(db.store, "fetch_by_id", unavailable)
        with pytest.raises(StoreUnavailable):
            await session.resolve(employee, "department")
        assert employee.relation_state("department") is RelationState.UNRESOLVED

        monkeypatch.setattr(db.store, "fetch_by_id", original)
        department = await session.resolve(employee, "department")
        assert department.id == 10


class TestEagerStrategy:
    """预加载测试"""

    @pytest.mark.asyncio
    async def test_single_path(self, session):
        """计划中的路径在返回前已解析"""
        employees = await session.query("Employee", {"id": 1}, StrategyContext.eager("department"))

        employee = employees[0]
        assert employee.relation_state("department") is RelationState.PRESENT
        assert employee.department.id == 10
        assert employee.department.name == "Eng"

    @pytest.mark.asyncio
    async def test_empty_collection_is_present(self, session):
        """无匹配行的集合为 PRESENT 空列表而不是 ABSENT"""
        departments = await session.query("Department", {"id": 20}, StrategyContext.eager("employees"))

        department = departments[0]
        assert department.relation_state("employees") is RelationState.PRESENT
        assert department.employees == []

    @pytest.mark.asyncio
    async def test_unknown_nested_relation_fails_before_store_access(self, db, session):
        """计划校验失败时不访问存储"""
        with pytest.raises(UnknownRelation):
            await session.query("Employee", {"id": 1}, StrategyContext.eager("department.manager"))
        assert db.store.fetch_count == 0

    @pytest.mark.asyncio
    async def test_fields_outside_plan_stay_unresolved(self, session):
        """计划外的字段保持 UNRESOLVED 且不允许按需解析"""
        departments = await session.query("Department", {"id": 10}, StrategyContext.eager("head"))
        department = departments[0]

        assert department.relation_state("head") is RelationState.PRESENT
        assert department.relation_state("employees") is RelationState.UNRESOLVED
        with pytest.raises(ResolutionNotAllowed):
            await session.resolve(department, "employees")

    @pytest.mark.asyncio
    async def test_nested_path_includes_parent(self, session):
        """嵌套路径先解析父段"""
        employees = await session.query("Employee", {"departmentId": 10}, StrategyContext.eager("department.head"))

        assert [e.id for e in employees] == [1, 2, 3]
        for employee in employees:
            department = employee.department
            assert department.id == 10
            assert department.relation_state("head") is RelationState.PRESENT
            assert department.head.id == 2
            assert department.relation_state("employees") is RelationState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_batched_fetches(self, db, session):
        """每个计划节点一次往返"""
        employees = await session.query("Employee", None, StrategyContext.eager("department"))

        assert db.store.fetch_count == 2
        states = {e.id: e.relation_state("department") for e in employees}
        assert states[1] is RelationState.PRESENT
        assert states[4] is RelationState.ABSENT
        assert states[5] is RelationState.ABSENT

        # 同一目标行在一次加载中共享实体
        by_id = {e.id: e for e in employees}
        assert by_id[1].department is by_id[2].department

    @pytest.mark.asyncio
    async def test_sibling_paths(self, db, session):
        """兄弟路径各自一次往返"""
        departments = await session.query("Department", None, StrategyContext.eager("employees", "head"))

        assert db.store.fetch_count == 3
        eng, empty = departments
        assert [e.id for e in eng.employees] == [1, 2, 3]
        assert eng.head.name == "Bob"
        assert empty.employees == []
        assert empty.relation_state("head") is RelationState.ABSENT

    @pytest.mark.asyncio
    async def test_qualified_path(self, session):
        """以根类型限定的路径"""
        employees = await session.query("Employee", {"id": 1}, StrategyContext.eager("Employee.department"))
        assert employees[0].department.id == 10

    @pytest.mark.asyncio
    async def test_path_from_other_root_rejected(self, db, session):
        """不从根类型出发的路径被拒绝"""
        with pytest.raises(InvalidLoadPlan):
            await session.query("Employee", {"id": 1}, StrategyContext.eager("Department.head"))
        assert db.store.fetch_count == 0

    @pytest.mark.asyncio
    async def test_relation_failure_fails_whole_query(self, db, session, monkeypatch):
        """任一路径获取失败则整个查询失败"""
        async def unavailable(entity_type, fk_field, values):
            raise StoreUnavailable("连接中断")

        monkeypatch.setattr(db.store, "fetch_by_foreign_keys", unavailable)
        with pytest.raises(StoreUnavailable):
            await session.query("Department", None, StrategyContext.eager("head", "employees"))

    @pytest.mark.asyncio
    async def test_sequential_loading(self):
        """关闭并发时结果一致"""
        config = Config(schema=SCHEMA, loading=LoadingConfig(eager_concurrency=False))
        db = RelationCoreDB(config)
        await seed(db)
        try:
            async with db.session() as session:
                departments = await session.query(
                    "Department", {"id": 10}, StrategyContext.eager("employees.department", "head")
                )
                department = departments[0]
                assert [e.id for e in department.employees] == [1, 2, 3]
                assert department.employees[0].department.name == "Eng"
                assert department.head.id == 2
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_strict_parent_paths(self):
        """严格模式下父路径必须显式列出"""
        config = Config(schema=SCHEMA, loading=LoadingConfig(include_parent_paths=False))
        db = RelationCoreDB(config)
        await seed(db)
        try:
            async with db.session() as session:
                with pytest.raises(InvalidLoadPlan):
                    await session.query("Employee", {"id": 1}, StrategyContext.eager("department.head"))

                employees = await session.query(
                    "Employee", {"id": 1}, StrategyContext.eager("department", "department.head")
                )
                assert employees[0].department.head.id == 2
        finally:
            await db.close()

    @pytest.mark.asyncio
    async def test_scenario_single_call(self, session):
        """一次调用返回已解析部门的员工"""
        employees = await session.query("Employee", {"id": 1}, StrategyContext.eager("department"))
        assert employees[0].department.to_dict(include_relations=False) == {"id": 10, "name": "Eng", "headId": 2}


class TestImplicitStrategy:
    """隐式加载测试"""

    @pytest.mark.asyncio
    async def test_read_resolves_once(self, db, session):
        """同一字段读取两次只访问一次存储"""
        employee = await session.get("Employee", 1, StrategyContext.implicit())
        fetches = db.store.fetch_count

        first = await employee.department
        second = await employee.department

        assert first is second
        assert first.name == "Eng"
        assert db.store.fetch_count == fetches + 1

    @pytest.mark.asyncio
    async def test_proxy_before_access(self, session):
        """读取前字段为惰性代理"""
        employee = await session.get("Employee", 1, StrategyContext.implicit())
        proxy = employee.department
        assert isinstance(proxy, LazyRelation)
        assert proxy.state is RelationState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_fields_resolve_independently(self, session):
        """解析一个字段不会解析其他字段"""
        department = await session.get("Department", 10, StrategyContext.implicit())

        head = await department.head
        assert head.id == 2
        assert department.relation_state("employees") is RelationState.UNRESOLVED

        # 到达的实体同样是惰性的
        head_department = await head.department
        assert head_department.id == 10

    @pytest.mark.asyncio
    async def test_concurrent_reads_share_one_fetch(self, db, session, monkeypatch):
        """并发读取同一字段只获取一次"""
        employee = await session.get("Employee", 1, StrategyContext.implicit())
        original = db.store.fetch_by_id

        async def slow_fetch(entity_type, entity_id):
            await asyncio.sleep(0.01)
            return await original(entity_type, entity_id)

        monkeypatch.setattr(db.store, "fetch_by_id", slow_fetch)
        fetches = db.store.fetch_count

        first, second = await asyncio.gather(employee.department, employee.department)

        assert first is second
        assert db.store.fetch_count == fetches + 1

    @pytest.mark.asyncio
    async def test_collection_access(self, session):
        """集合字段隐式加载"""
        department = await session.get("Department", 10, StrategyContext.implicit())
        employees = await department.employees
        assert [e.name for e in employees] == ["Ann", "Bob", "Cid"]


class TestSessionScope:
    """会话作用域测试"""

    @pytest.mark.asyncio
    async def test_resolve_after_close(self, db):
        """会话关闭后解析失败"""
        session = db.session()
        employee = await session.get("Employee", 1)
        await session.close()

        with pytest.raises(SessionClosed):
            await session.resolve(employee, "department")
        assert employee.relation_state("department") is RelationState.UNRESOLVED

    @pytest.mark.asyncio
    async def test_implicit_access_after_close(self, db):
        """会话关闭后隐式读取失败，已解析的值仍可读取"""
        session = db.session()
        employee = await session.get("Employee", 1, StrategyContext.implicit())
        department = await employee.department
        await session.close()

        assert (await employee.department) is department
        with pytest.raises(SessionClosed):
            await department.head

    @pytest.mark.asyncio
    async def test_session_closed_is_store_unavailable(self, db):
        """SessionClosed 属于 StoreUnavailable"""
        session = db.session()
        await session.close()
        with pytest.raises(StoreUnavailable):
            await session.query("Employee")

    @pytest.mark.asyncio
    async def test_entity_from_other_session(self, db):
        """不允许通过其他会话解析实体"""
        async with db.session() as first, db.session() as second:
            employee = await first.get("Employee", 1)
            with pytest.raises(ResolutionNotAllowed):
                await second.resolve(employee, "department")

    @pytest.mark.asyncio
    async def test_unreferenced_session_released(self, db):
        """实体不持有会话：会话被回收后隐式读取失败"""
        employees = await db.session().query("Employee", {"id": 1}, "implicit")
        gc.collect()

        assert len(db.sessions) == 0
        with pytest.raises(SessionClosed):
            await employees[0].department
