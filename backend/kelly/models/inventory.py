from sqlalchemy import Column, String, Text, Float, Integer, DateTime, ForeignKey, Index, UniqueConstraint, JSON
from sqlalchemy.orm import relationship

from .base import TimestampedModel


# Statuses an article can be priced/listed from
LISTABLE_STATUSES = ("draft", "ready", "scheduled", "published")
SOLD_STATUS = "sold"


class ArticleDB(TimestampedModel):
    __tablename__ = "articles"

    user_id = Column(String(36), nullable=False)
    title = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    brand = Column(String(100), nullable=True)
    size = Column(String(50), nullable=True)
    condition = Column(String(50), nullable=True)  # 'new_with_tags', 'very_good', 'good', ...
    price = Column(Float, nullable=True)
    season = Column(String(20), nullable=True)
    color = Column(String(50), nullable=True)
    material = Column(String(100), nullable=True)
    photos = Column(JSON, default=list, nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    suggested_price_min = Column(Float, nullable=True)
    suggested_price_max = Column(Float, nullable=True)
    scheduled_for = Column(DateTime, nullable=True)
    sold_at = Column(DateTime, nullable=True)
    sold_price = Column(Float, nullable=True)
    seo_keywords = Column(JSON, default=list, nullable=False)
    hashtags = Column(JSON, default=list, nullable=False)
    search_terms = Column(JSON, default=list, nullable=False)

    lot_item = relationship("LotItemDB", back_populates="article", uselist=False)

    __table_args__ = (
        Index("idx_articles_user_status", "user_id", "status"),
        Index("idx_articles_status_sold_at", "status", "sold_at"),
    )


class LotDB(TimestampedModel):
    __tablename__ = "lots"

    user_id = Column(String(36), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, nullable=False)
    original_total_price = Column(Float, nullable=False)
    discount_percentage = Column(Integer, nullable=False, default=0)
    cover_photo = Column(String(500), nullable=True)
    photos = Column(JSON, default=list, nullable=False)
    status = Column(String(20), nullable=False, default="draft")
    season = Column(String(20), nullable=True)
    scheduled_for = Column(DateTime, nullable=True)
    seo_keywords = Column(JSON, default=list, nullable=False)
    hashtags = Column(JSON, default=list, nullable=False)
    search_terms = Column(JSON, default=list, nullable=False)
    ai_confidence_score = Column(Integer, nullable=True)

    items = relationship("LotItemDB", back_populates="lot", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_lots_user_status", "user_id", "status"),
    )


class LotItemDB(TimestampedModel):
    __tablename__ = "lot_items"

    lot_id = Column(String(36), ForeignKey("lots.id", ondelete="CASCADE"), nullable=False)
    article_id = Column(String(36), ForeignKey("articles.id"), nullable=False)

    lot = relationship("LotDB", back_populates="items")
    article = relationship("ArticleDB", back_populates="lot_item")

    __table_args__ = (
        UniqueConstraint("article_id", name="uq_lot_items_article"),  # An article belongs to at most one lot
        Index("idx_lot_items_lot", "lot_id"),
    )


class SellingSuggestionDB(TimestampedModel):
    __tablename__ = "selling_suggestions"

    user_id = Column(String(36), nullable=False)
    article_id = Column(String(36), ForeignKey("articles.id"), nullable=True)
    lot_id = Column(String(36), ForeignKey("lots.id"), nullable=True)
    suggested_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    priority = Column(String(10), nullable=False, default="medium")
    reason = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # 'pending', 'accepted', 'rejected'

    __table_args__ = (
        Index("idx_selling_suggestions_user_status", "user_id", "status"),
    )
