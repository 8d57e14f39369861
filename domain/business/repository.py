"""
商家目录接口 - 归属与权限查询
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import Business


class BusinessDirectory(ABC):
    """商家目录：getBusinessOwner / isBusinessAdmin / 币种查询"""

    @abstractmethod
    async def get(self, business_id: int) -> Optional[Business]:
        pass

    @abstractmethod
    async def get_owner_id(self, business_id: int) -> Optional[int]:
        pass

    @abstractmethod
    async def is_admin(self, user_id: int, business_id: int) -> bool:
        pass

    @abstractmethod
    async def get_currency(self, business_id: int) -> Optional[str]:
        pass

    async def can_manage(self, user_id: int, business_id: int) -> bool:
        """所有者或管理员"""
        owner_id = await self.get_owner_id(business_id)
        if owner_id is not None and owner_id == user_id:
            return True
        return await self.is_admin(user_id, business_id)

    @abstractmethod
    async def list_ids(self) -> List[int]:
        """全部商家ID（后台批处理使用）"""
        pass
