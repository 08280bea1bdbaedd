import hashlib
from datetime import datetime, date as date_type, timezone
from typing import List, Optional
from sqlalchemy import String, Integer, Float, Text, ForeignKey, Boolean, DateTime, Date, BigInteger, Index, JSON, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def url_hash(*parts: str) -> str:
    """Stable digest of URL parts; long URLs cannot be indexed directly on MySQL."""
    return hashlib.sha1("\n".join(parts).encode("utf-8")).hexdigest()


def _backlink_hash_default(context) -> str:
    params = context.get_current_parameters()
    return url_hash(params["source_url"], params["target_url"])


def _page_hash_default(context) -> str:
    return url_hash(context.get_current_parameters()["url"])


class Base(DeclarativeBase):
    pass

class Client(Base):
    """Tenant: one agency client whose third-party SEO data we keep in sync"""
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(191), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    domain: Mapped[Optional[str]] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), default="ACTIVE")
    tenant_class: Mapped[str] = mapped_column(String(64), default="standard")
    auto_refresh_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    backlinks: Mapped[List["Backlink"]] = relationship(back_populates="client", cascade="all, delete-orphan")
    top_pages: Mapped[List["TopPage"]] = relationship(back_populates="client", cascade="all, delete-orphan")
    traffic_sources: Mapped[List["TrafficSource"]] = relationship(back_populates="client", cascade="all, delete-orphan")

class Backlink(Base):
    """Provider rows carry first_seen; rows without it were entered by hand"""
    __tablename__ = "backlinks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"))
    source_url: Mapped[str] = mapped_column(Text)
    target_url: Mapped[str] = mapped_column(Text)
    url_hash: Mapped[str] = mapped_column(String(40), default=_backlink_hash_default)
    anchor_text: Mapped[Optional[str]] = mapped_column(Text)
    domain_rating: Mapped[Optional[float]] = mapped_column(Float)
    url_rating: Mapped[Optional[float]] = mapped_column(Float)
    traffic: Mapped[Optional[int]] = mapped_column(Integer)
    is_follow: Mapped[bool] = mapped_column(Boolean, default=True)
    is_lost: Mapped[bool] = mapped_column(Boolean, default=False)
    first_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_seen: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    client: Mapped["Client"] = relationship(back_populates="backlinks")

    __table_args__ = (
        UniqueConstraint("client_id", "url_hash", name="uq_backlinks_client_url_hash"),
        Index("idx_backlinks_client_lost", "client_id", "is_lost"),
    )

class BacklinkTimeseries(Base):
    __tablename__ = "backlink_timeseries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"))
    date: Mapped[date_type] = mapped_column(Date)
    new_backlinks: Mapped[int] = mapped_column(Integer, default=0)
    lost_backlinks: Mapped[int] = mapped_column(Integer, default=0)
    new_referring_domains: Mapped[int] = mapped_column(Integer, default=0)
    lost_referring_domains: Mapped[int] = mapped_column(Integer, default=0)
    new_referring_main_domains: Mapped[int] = mapped_column(Integer, default=0)
    lost_referring_main_domains: Mapped[int] = mapped_column(Integer, default=0)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("client_id", "date", name="uq_backlink_timeseries_client_date"),
    )

class TopPage(Base):
    __tablename__ = "top_pages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"))
    url: Mapped[str] = mapped_column(Text)
    url_hash: Mapped[str] = mapped_column(String(40), default=_page_hash_default)
    organic_pos1: Mapped[int] = mapped_column(Integer, default=0)
    organic_pos2_3: Mapped[int] = mapped_column(Integer, default=0)
    organic_pos4_10: Mapped[int] = mapped_column(Integer, default=0)
    organic_count: Mapped[int] = mapped_column(Integer, default=0)
    organic_etv: Mapped[float] = mapped_column(Float, default=0.0)
    organic_is_new: Mapped[int] = mapped_column(Integer, default=0)
    organic_is_up: Mapped[int] = mapped_column(Integer, default=0)
    organic_is_down: Mapped[int] = mapped_column(Integer, default=0)
    organic_is_lost: Mapped[int] = mapped_column(Integer, default=0)
    paid_count: Mapped[int] = mapped_column(Integer, default=0)
    paid_etv: Mapped[float] = mapped_column(Float, default=0.0)
    raw_data: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    client: Mapped["Client"] = relationship(back_populates="top_pages")

    __table_args__ = (
        UniqueConstraint("client_id", "url_hash", name="uq_top_pages_client_url_hash"),
        Index("idx_top_pages_client_etv", "client_id", "organic_etv"),
    )

class TrafficSource(Base):
    __tablename__ = "traffic_sources"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(64))
    value: Mapped[float] = mapped_column(Float, default=0.0)
    total_keywords: Mapped[int] = mapped_column(Integer, default=0)
    total_estimated_traffic: Mapped[float] = mapped_column(Float, default=0.0)
    organic_estimated_traffic: Mapped[float] = mapped_column(Float, default=0.0)
    average_rank: Mapped[Optional[float]] = mapped_column(Float)
    rank_sample_size: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    client: Mapped["Client"] = relationship(back_populates="traffic_sources")

    __table_args__ = (
        UniqueConstraint("client_id", "name", name="uq_traffic_sources_client_name"),
    )

class RankedKeywordsHistory(Base):
    __tablename__ = "ranked_keywords_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    client_id: Mapped[str] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"))
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)
    total_keywords: Mapped[int] = mapped_column(Integer, default=0)
    top3: Mapped[int] = mapped_column(Integer, default=0)
    top10: Mapped[int] = mapped_column(Integer, default=0)
    page2: Mapped[int] = mapped_column(Integer, default=0)
    pos21_30: Mapped[int] = mapped_column(Integer, default=0)
    pos31_50: Mapped[int] = mapped_column(Integer, default=0)
    pos51_plus: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("client_id", "month", "year", name="uq_ranked_keywords_client_month_year"),
    )

class RefreshLog(Base):
    __tablename__ = "refresh_logs"

    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    client_id: Mapped[Optional[str]] = mapped_column(ForeignKey("clients.id", ondelete="SET NULL"))
    resource_type: Mapped[str] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(16))
    message: Mapped[Optional[str]] = mapped_column(Text)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    items_written: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
