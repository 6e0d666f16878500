"""Shared dependencies for the revenue API routers."""

from typing import Annotated, Any, Callable, TypeVar

from fastapi import Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.security import RequireOrganization
from app.services.revenue_engine import AnalysisRun, RevenueEngine

M = TypeVar("M", bound=BaseModel)
T = TypeVar("T")

# Type alias for database session dependency
DbSession = Annotated[AsyncSession, Depends(get_db)]


class EngineRunner:
    """Runs revenue engine calls on the request's async session.

    The engine and its analyzers are synchronous, so each call executes
    through ``AsyncSession.run_sync`` against the session's sync facade.
    Build response models inside the call: ORM attributes cannot be lazy
    loaded once it returns.
    """

    def __init__(self, db: AsyncSession, organization_id: str, user_id: str | None = None) -> None:
        self._db = db
        self.organization_id = organization_id
        self.user_id = user_id

    async def run(self, call: Callable[[RevenueEngine], T]) -> T:
        def bound(session: Session) -> T:
            return call(RevenueEngine(session, self.organization_id, user_id=self.user_id))

        return await self._db.run_sync(bound)


def get_revenue_engine(db: DbSession, context: RequireOrganization) -> EngineRunner:
    """Engine runner scoped to the request's organization and user."""
    return EngineRunner(db, context.organization_id, user_id=context.user_id)


Engine = Annotated[EngineRunner, Depends(get_revenue_engine)]


def run_response(model: type[M], run: AnalysisRun, **fields: Any) -> M:
    """Build an analyze response from a run and the result's fields."""
    return model.model_validate(
        {
            "start_date": run.start_date,
            "end_date": run.end_date,
            "as_of": run.as_of,
            "analyzed_at": run.analyzed_at,
            "persistence": run.persistence,
            **fields,
        },
        from_attributes=True,
    )
