"""SQLAlchemy model guarding each approval message against double actuation."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column

from timelog_approvals.db import Base, session_scope


class DecisionClaim(Base):
    """First actuation recorded against an approval message.

    Holds no request data beyond identifiers for tracing; the approval token
    on the message stays the only source of the request itself.
    """

    __tablename__ = "decision_claims"
    __table_args__ = (
        UniqueConstraint("channel_id", "message_ts", name="uq_decision_claims_message"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[str] = mapped_column(String(32), nullable=False)
    message_ts: Mapped[str] = mapped_column(String(32), nullable=False)
    token_digest: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    issue_id: Mapped[str] = mapped_column(String(64), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    decided_by: Mapped[str] = mapped_column(String(32), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    outcome_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DuplicateDecisionError(Exception):
    """Raised when an approval message has already been actuated."""


def claim_decision(
    *,
    channel_id: str,
    message_ts: str,
    token_digest: str,
    issue_id: str,
    decision: str,
    decided_by: str,
) -> DecisionClaim:
    """Insert the claim for a message, or raise if another actuation got there first."""

    try:
        with session_scope() as session:
            existing = session.execute(
                select(DecisionClaim.id).where(
                    DecisionClaim.channel_id == channel_id,
                    DecisionClaim.message_ts == message_ts,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateDecisionError(f"Message {channel_id}/{message_ts} was already actuated.")

            claim = DecisionClaim(
                channel_id=channel_id,
                message_ts=message_ts,
                token_digest=token_digest,
                issue_id=issue_id,
                decision=decision,
                decided_by=decided_by,
                claimed_at=datetime.now(UTC),
            )
            session.add(claim)
            session.flush()
            session.refresh(claim)
            session.expunge(claim)
            return claim
    except IntegrityError as exc:
        raise DuplicateDecisionError(f"Message {channel_id}/{message_ts} was already actuated.") from exc


def record_outcome(*, channel_id: str, message_ts: str, outcome: str, detail: str | None = None) -> bool:
    """Store the terminal outcome on a claim; returns False if it was already recorded."""

    stmt = (
        update(DecisionClaim)
        .where(
            DecisionClaim.channel_id == channel_id,
            DecisionClaim.message_ts == message_ts,
            DecisionClaim.outcome.is_(None),
        )
        .values(outcome=outcome, outcome_detail=detail, completed_at=datetime.now(UTC))
    )
    with session_scope() as session:
        result = session.execute(stmt)
        return result.rowcount == 1
