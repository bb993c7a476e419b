"""SQL-backed processed-artifact ledger."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from pkghub.db.engine import get_session_factory
from pkghub.db.models import Base, OrchestrationOutcome, ProcessedArtifact
from pkghub.ingestion.ledger import OutcomeEntry
from pkghub.models import PackageIdentity


class SqlLedger:
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = get_session_factory(engine)

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def _find(self, session, identity: PackageIdentity) -> ProcessedArtifact | None:
        result = await session.execute(
            select(ProcessedArtifact).where(
                ProcessedArtifact.name == identity.name,
                ProcessedArtifact.version == identity.version,
            )
        )
        return result.scalar_one_or_none()

    async def is_processed(self, identity: PackageIdentity, digest: str) -> bool:
        async with self._sessions() as session:
            row = await self._find(session, identity)
            return row is not None and row.integrity_digest == digest

    async def mark_processed(self, identity: PackageIdentity, digest: str) -> None:
        async with self._sessions() as session:
            row = await self._find(session, identity)
            if row is not None:
                row.integrity_digest = digest
                await session.commit()
                return
            session.add(ProcessedArtifact(
                name=identity.name,
                version=identity.version,
                integrity_digest=digest,
            ))
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent writer inserted the row first; overwrite its digest.
                await session.rollback()
                row = await self._find(session, identity)
                if row is not None:
                    row.integrity_digest = digest
                    await session.commit()

    async def record_outcome(self, entry: OutcomeEntry) -> None:
        async with self._sessions() as session:
            session.add(OrchestrationOutcome(
                name=entry.identity.name,
                version=entry.identity.version,
                integrity_digest=entry.integrity_digest,
                state=entry.state,
                reason=entry.reason or None,
                attempt=entry.attempt,
                created_at=entry.recorded_at,
            ))
            await session.commit()

    async def outcomes_for(self, identity: PackageIdentity) -> list[OrchestrationOutcome]:
        async with self._sessions() as session:
            result = await session.execute(
                select(OrchestrationOutcome)
                .where(
                    OrchestrationOutcome.name == identity.name,
                    OrchestrationOutcome.version == identity.version,
                )
                .order_by(OrchestrationOutcome.id)
            )
            return list(result.scalars().all())
