from sqlalchemy import Column, DateTime, Integer, String

from database import Base


class SubscriptionRow(Base):
    """
    One subscription record per user.
    trial_end_date and created_at are written on insert only.
    """
    __tablename__ = "subscriptions"

    user_id = Column(String, primary_key=True)
    plan = Column(String, nullable=False)
    status = Column(String, nullable=False, index=True)
    trial_end_date = Column(DateTime(timezone=True), nullable=False)
    upgraded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class AssignmentUsageRow(Base):
    """Assignments created per user per calendar month."""
    __tablename__ = "assignment_usage"

    user_id = Column(String, primary_key=True)
    period = Column(String, primary_key=True)
    count = Column(Integer, nullable=False, default=0)
