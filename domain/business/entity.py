"""
商家实体 - 仅包含履约核心需要的字段（所有者、币种）
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MemberRole(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"


@dataclass
class Business:
    id: int
    name: str
    owner_id: int
    currency_code: str = "EUR"
    is_platform: bool = False
    phone_number: Optional[str] = None
