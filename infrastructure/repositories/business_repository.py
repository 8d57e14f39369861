"""
商家目录的SQLAlchemy实现
"""
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.business.entity import Business, MemberRole
from domain.business.repository import BusinessDirectory
from infrastructure.models.business import BusinessMemberModel, BusinessModel


class SQLAlchemyBusinessDirectory(BusinessDirectory):
    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: BusinessModel) -> Business:
        return Business(
            id=model.id,
            name=model.name,
            owner_id=model.owner_id,
            currency_code=model.currency_code,
            is_platform=bool(model.is_platform),
            phone_number=model.phone_number,
        )

    async def get(self, business_id: int) -> Optional[Business]:
        model = await self.session.get(BusinessModel, business_id)
        return self._to_entity(model) if model else None

    async def get_owner_id(self, business_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(BusinessModel.owner_id).where(BusinessModel.id == business_id)
        )
        return result.scalar_one_or_none()

    async def is_admin(self, user_id: int, business_id: int) -> bool:
        result = await self.session.execute(
            select(BusinessMemberModel.id).where(
                BusinessMemberModel.business_id == business_id,
                BusinessMemberModel.user_id == user_id,
                BusinessMemberModel.role == MemberRole.ADMIN.value,
            )
        )
        return result.first() is not None

    async def get_currency(self, business_id: int) -> Optional[str]:
        result = await self.session.execute(
            select(BusinessModel.currency_code).where(BusinessModel.id == business_id)
        )
        return result.scalar_one_or_none()

    async def list_ids(self) -> List[int]:
        result = await self.session.execute(select(BusinessModel.id).order_by(BusinessModel.id))
        return list(result.scalars().all())
