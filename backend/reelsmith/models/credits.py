"""Credit balance and usage log models."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, JSON

from reelsmith.db.database import Base


class UserCredits(Base):
    """Current credit balance, one row per user."""

    __tablename__ = "user_credits"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), unique=True, nullable=False, index=True)
    current_credits = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<UserCredits(user_id={self.user_id}, credits={self.current_credits})>"


class CreditUsageLog(Base):
    """Append-only audit log of credit changes."""

    __tablename__ = "credit_usage_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    feature_name = Column(String(100), nullable=False, index=True)
    credits_consumed = Column(Integer, nullable=False)  # Negative for grants
    remaining_credits = Column(Integer, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "feature_name": self.feature_name,
            "credits_consumed": self.credits_consumed,
            "remaining_credits": self.remaining_credits,
            "details": self.details,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
