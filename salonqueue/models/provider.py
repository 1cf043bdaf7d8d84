"""
Service provider ("expert") models: roster, capabilities, leave calendar,
and the per-day lock row used to serialize busy checks.
"""
from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from salonqueue.core.database import Base


class ServiceProvider(Base):
    __tablename__ = "service_providers"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    capabilities = relationship("ProviderService", cascade="all, delete-orphan")
    leaves = relationship("ProviderLeave", cascade="all, delete-orphan", order_by="ProviderLeave.start_date")

    @property
    def service_ids(self) -> set:
        return {c.service_id for c in self.capabilities}

    def __repr__(self):
        return f"<ServiceProvider(id={self.id}, name='{self.name}', active={self.is_active})>"


class ProviderService(Base):
    """Capability join row: the provider can perform the service."""
    __tablename__ = "provider_services"

    provider_id = Column(Integer, ForeignKey("service_providers.id", ondelete="CASCADE"), primary_key=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), primary_key=True)


class ProviderLeave(Base):
    """Inclusive leave interval."""
    __tablename__ = "provider_leaves"

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String(255), nullable=True)


class ProviderDayLock(Base):
    """
    One row per (provider, business, day). Locked FOR UPDATE while a request
    decides whether the provider is free, so two requests cannot both claim them.
    """
    __tablename__ = "provider_day_locks"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("service_providers.id", ondelete="CASCADE"), nullable=False)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False)
    lock_date = Column(Date, nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider_id", "business_id", "lock_date", name="uq_provider_day_lock"),
    )
