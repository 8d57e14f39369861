"""
访问控制辅助函数 - 基于商家目录的所有者/管理员判断
"""
from __future__ import annotations

from domain.business.entity import Business
from domain.business.repository import BusinessDirectory
from domain.common.exceptions import BusinessNotFoundException, NotAuthorizedException


async def require_business(directory: BusinessDirectory, business_id: int) -> Business:
    business = await directory.get(business_id)
    if business is None:
        raise BusinessNotFoundException(business_id)
    return business


async def require_manager(directory: BusinessDirectory, user_id: int, business_id: int) -> None:
    """操作人必须是商家所有者或管理员"""
    if not await directory.can_manage(user_id, business_id):
        raise NotAuthorizedException(business_id=business_id)
