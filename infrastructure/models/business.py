"""
商家数据库模型（目录数据由外部维护，这里只读取归属关系与币种）
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from datetime import datetime, timezone

from .base import Base


class BusinessModel(Base):
    __tablename__ = "businesses"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, comment="商家名称")
    owner_id = Column(Integer, nullable=False, index=True, comment="所有者用户ID")
    currency_code = Column(String(3), nullable=False, default="EUR", comment="结算币种 ISO-4217")
    is_platform = Column(Boolean, nullable=False, default=False, comment="是否平台自营商家")
    phone_number = Column(String(32), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def __repr__(self):
        return f"<BusinessModel(id={self.id}, name='{self.name}', owner_id={self.owner_id})>"


class BusinessMemberModel(Base):
    __tablename__ = "business_members"

    id = Column(Integer, primary_key=True, index=True)
    business_id = Column(Integer, ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    role = Column(String(20), nullable=False, default="STAFF", comment="ADMIN / STAFF")

    __table_args__ = (
        UniqueConstraint("business_id", "user_id", name="uq_business_members_business_user"),
    )
