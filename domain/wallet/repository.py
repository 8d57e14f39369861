"""
钱包仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import Wallet, WalletTransaction, WalletTransactionStatus, WalletTransactionType


class WalletRepository(ABC):
    """钱包仓储抽象接口"""

    @abstractmethod
    async def get_by_id(self, wallet_id: int, *, for_update: bool = False) -> Optional[Wallet]:
        pass

    @abstractmethod
    async def get_by_user_id(self, user_id: int, *, for_update: bool = False) -> Optional[Wallet]:
        pass

    @abstractmethod
    async def create_if_absent(self, wallet: Wallet) -> Wallet:
        """
        插入钱包；user_id 唯一约束冲突时返回已存在的钱包

        并发首次访问时以数据库唯一约束为准，不会产生两个钱包。
        """
        pass

    @abstractmethod
    async def update(self, wallet: Wallet) -> Wallet:
        pass


class WalletTransactionRepository(ABC):
    """钱包流水仓储抽象接口"""

    @abstractmethod
    async def create(self, transaction: WalletTransaction) -> WalletTransaction:
        pass

    @abstractmethod
    async def update(self, transaction: WalletTransaction) -> WalletTransaction:
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: int, *, for_update: bool = False) -> Optional[WalletTransaction]:
        pass

    @abstractmethod
    async def find_pending_deposit_for_order(
        self, order_id: int, *, for_update: bool = False
    ) -> Optional[WalletTransaction]:
        """充值订单对应的待完成充值流水"""
        pass

    @abstractmethod
    async def list_by_wallet(
        self,
        wallet_id: int,
        skip: int = 0,
        limit: int = 100,
        type: Optional[WalletTransactionType] = None,
        status: Optional[WalletTransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> List[WalletTransaction]:
        pass

    @abstractmethod
    async def count_by_wallet(
        self,
        wallet_id: int,
        type: Optional[WalletTransactionType] = None,
        status: Optional[WalletTransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> int:
        pass
