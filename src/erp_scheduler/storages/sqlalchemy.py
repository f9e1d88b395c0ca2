import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from erp_scheduler.domain.execution import ExecutionStatus, TaskExecution, TriggerType
from erp_scheduler.domain.task import ScheduledTask
from erp_scheduler.errors import DuplicateTaskCodeError
from erp_scheduler.history import ExecutionFilters
from erp_scheduler.storages.protocol import Storage
from erp_scheduler.timeutils import to_datetime

logger = logging.getLogger(__name__)

Base = declarative_base()


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo, so everything is stored as UTC
    if value is None:
        return None
    return to_datetime(value).astimezone(timezone.utc)


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return to_datetime(value)


class TaskModel(Base):
    __tablename__ = 'scheduled_tasks'

    id = Column(String, primary_key=True)
    task_code = Column(String, nullable=False, unique=True)
    task_name = Column(String, nullable=False)
    description = Column(String)
    cron_expression = Column(String, nullable=False)
    timezone = Column(String, nullable=False)
    webhook_url = Column(String)
    task_parameters = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True)
    last_run_at = Column(DateTime(timezone=True))
    last_run_status = Column(String)
    last_run_duration_ms = Column(Integer)
    next_run_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)

    executions = relationship("ExecutionModel", back_populates="task")


class ExecutionModel(Base):
    __tablename__ = 'task_executions'

    id = Column(String, primary_key=True)
    task_id = Column(String, ForeignKey('scheduled_tasks.id'), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String, nullable=False)
    triggered_by = Column(String, nullable=False)
    execution_time_ms = Column(Integer)
    records_processed = Column(Integer)
    result_summary = Column(JSON)
    error_message = Column(String)
    created_at = Column(DateTime(timezone=True), nullable=False)

    task = relationship("TaskModel", back_populates="executions")


class SqlAlchemyStorage(Storage):
    def __init__(self, db_url: str, **engine_kwargs):
        self.engine = create_async_engine(db_url, **engine_kwargs)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self.async_session() as session:
            yield session

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def create_task(self, task: ScheduledTask) -> str:
        async with self._session() as session:
            existing = await session.execute(select(TaskModel.id).filter_by(task_code=task.task_code))
            if existing.scalar_one_or_none() is not None:
                raise DuplicateTaskCodeError(task.task_code)

            session.add(TaskModel(id=task.id, **self._task_columns(task)))
            try:
                await session.commit()
            except IntegrityError as e:
                raise DuplicateTaskCodeError(task.task_code) from e
            return task.id

    async def get_task(self, task_id: str) -> Optional[ScheduledTask]:
        async with self._session() as session:
            result = await session.execute(select(TaskModel).filter_by(id=task_id))
            db_task = result.scalar_one_or_none()
            if db_task:
                return self._db_to_task(db_task)
            return None

    async def get_task_by_code(self, task_code: str) -> Optional[ScheduledTask]:
        async with self._session() as session:
            result = await session.execute(select(TaskModel).filter_by(task_code=task_code))
            db_task = result.scalar_one_or_none()
            if db_task:
                return self._db_to_task(db_task)
            return None

    async def update_task(self, task: ScheduledTask) -> bool:
        async with self._session() as session:
            result = await session.execute(select(TaskModel).filter_by(id=task.id))
            db_task = result.scalar_one_or_none()
            if db_task:
                for column, value in self._task_columns(task).items():
                    setattr(db_task, column, value)
                await session.commit()
                return True
            return False

    async def list_tasks(self, active_only: bool = False, limit: Optional[int] = None, offset: int = 0) -> List[ScheduledTask]:
        query = select(TaskModel).order_by(TaskModel.task_code)
        if active_only:
            query = query.filter_by(is_active=True)
        query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as session:
            result = await session.execute(query)
            return [self._db_to_task(db_task) for db_task in result.scalars()]

    async def create_execution(self, execution: TaskExecution) -> str:
        async with self._session() as session:
            session.add(ExecutionModel(
                id=execution.id,
                task_id=execution.task_id,
                started_at=_to_utc(execution.started_at),
                triggered_by=execution.triggered_by.value,
                created_at=_to_utc(execution.created_at),
                **self._execution_outcome(execution),
            ))
            await session.commit()
            return execution.id

    async def get_execution(self, execution_id: str) -> Optional[TaskExecution]:
        async with self._session() as session:
            result = await session.execute(select(ExecutionModel).filter_by(id=execution_id))
            db_execution = result.scalar_one_or_none()
            if db_execution:
                return self._db_to_execution(db_execution)
            return None

    async def update_execution(self, execution: TaskExecution) -> bool:
        # started_at and triggered_by are immutable once created
        async with self._session() as session:
            result = await session.execute(select(ExecutionModel).filter_by(id=execution.id))
            db_execution = result.scalar_one_or_none()
            if db_execution:
                for column, value in self._execution_outcome(execution).items():
                    setattr(db_execution, column, value)
                await session.commit()
                return True
            return False

    async def list_executions(self, filters: Optional[ExecutionFilters] = None) -> List[TaskExecution]:
        filters = filters or ExecutionFilters()
        query = select(ExecutionModel)
        if filters.task_id is not None:
            query = query.filter_by(task_id=filters.task_id)
        if filters.status is not None:
            query = query.filter_by(status=filters.status.value)
        if filters.triggered_by is not None:
            query = query.filter_by(triggered_by=filters.triggered_by.value)
        if filters.start_date is not None:
            query = query.where(ExecutionModel.started_at >= _to_utc(filters.start_date))
        if filters.end_date is not None:
            query = query.where(ExecutionModel.started_at <= _to_utc(filters.end_date))
        query = query.order_by(ExecutionModel.started_at.desc())
        if filters.offset:
            query = query.offset(filters.offset)
        if filters.limit:
            query = query.limit(filters.limit)

        async with self._session() as session:
            result = await session.execute(query)
            return [self._db_to_execution(db_execution) for db_execution in result.scalars()]

    def _task_columns(self, task: ScheduledTask) -> dict:
        return {
            "task_code": task.task_code,
            "task_name": task.task_name,
            "description": task.description,
            "cron_expression": task.cron_expression,
            "timezone": task.timezone,
            "webhook_url": task.webhook_url,
            "task_parameters": task.task_parameters,
            "is_active": task.is_active,
            "last_run_at": _to_utc(task.last_run_at),
            "last_run_status": task.last_run_status.value if task.last_run_status else None,
            "last_run_duration_ms": task.last_run_duration_ms,
            "next_run_at": _to_utc(task.next_run_at),
            "created_at": _to_utc(task.created_at),
        }

    def _execution_outcome(self, execution: TaskExecution) -> dict:
        return {
            "completed_at": _to_utc(execution.completed_at),
            "status": execution.status.value,
            "execution_time_ms": execution.execution_time_ms,
            "records_processed": execution.records_processed,
            "result_summary": execution.result_summary,
            "error_message": execution.error_message,
        }

    def _db_to_task(self, db_task: TaskModel) -> ScheduledTask:
        return ScheduledTask(
            id=db_task.id,
            task_code=db_task.task_code,
            task_name=db_task.task_name,
            description=db_task.description,
            cron_expression=db_task.cron_expression,
            timezone=db_task.timezone,
            webhook_url=db_task.webhook_url,
            task_parameters=db_task.task_parameters or {},
            is_active=db_task.is_active,
            last_run_at=_from_db(db_task.last_run_at),
            last_run_status=ExecutionStatus(db_task.last_run_status) if db_task.last_run_status else None,
            last_run_duration_ms=db_task.last_run_duration_ms,
            next_run_at=_from_db(db_task.next_run_at),
            created_at=_from_db(db_task.created_at),
        )

    def _db_to_execution(self, db_execution: ExecutionModel) -> TaskExecution:
        return TaskExecution(
            id=db_execution.id,
            task_id=db_execution.task_id,
            started_at=_from_db(db_execution.started_at),
            completed_at=_from_db(db_execution.completed_at),
            status=ExecutionStatus(db_execution.status),
            triggered_by=TriggerType(db_execution.triggered_by),
            execution_time_ms=db_execution.execution_time_ms,
            records_processed=db_execution.records_processed,
            result_summary=db_execution.result_summary,
            error_message=db_execution.error_message,
            created_at=_from_db(db_execution.created_at),
        )


class InMemoryStorage(SqlAlchemyStorage):
    """
    SQLite database held in memory.

    All sessions share one connection and are used one at a time.
    """

    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        async with self._lock:
            async with self.async_session() as session:
                yield session
