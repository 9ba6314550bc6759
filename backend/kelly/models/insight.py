from sqlalchemy import Column, String, Text, Integer, DateTime, Index, JSON

from .base import TimestampedModel


class InsightDB(TimestampedModel):
    __tablename__ = "kelly_insights"

    user_id = Column(String(36), nullable=False)
    cache_key = Column(String(50), nullable=False)  # Generator/pipeline that produced the batch
    type = Column(String(50), nullable=False)
    priority = Column(String(10), nullable=False, default="medium")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False, default="")
    action_label = Column(String(255), nullable=True)
    article_ids = Column(JSON, default=list, nullable=False)
    article_titles = Column(JSON, default=list, nullable=False)
    suggested_action = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="active")  # 'active', 'dismissed', 'completed'
    position = Column(Integer, nullable=False, default=0)  # Order inside the batch
    last_refresh_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    dismissed_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_kelly_insights_user_key_status", "user_id", "cache_key", "status"),
        Index("idx_kelly_insights_expires", "expires_at"),
    )
