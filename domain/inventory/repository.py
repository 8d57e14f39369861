"""
库存仓储接口 - 定义数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import ProductVariant, ProductBatch, StockMovement


class ProductVariantRepository(ABC):
    """商品规格仓储（目录数据的只读视图 + 库存缓存写入）"""

    @abstractmethod
    async def get_by_id(self, variant_id: int, *, for_update: bool = False) -> Optional[ProductVariant]:
        """根据ID获取规格；for_update 时加行锁"""
        pass

    @abstractmethod
    async def update(self, variant: ProductVariant) -> ProductVariant:
        """持久化库存缓存"""
        pass

    @abstractmethod
    async def list_by_business(self, business_id: int, skip: int = 0, limit: int = 100) -> List[ProductVariant]:
        """商家全部规格及其库存缓存，按名称排序"""
        pass

    @abstractmethod
    async def count_by_business(self, business_id: int) -> int:
        pass


class ProductBatchRepository(ABC):
    """批次仓储"""

    @abstractmethod
    async def create(self, batch: ProductBatch) -> ProductBatch:
        pass

    @abstractmethod
    async def get_by_id(self, batch_id: int, *, for_update: bool = False) -> Optional[ProductBatch]:
        pass

    @abstractmethod
    async def update(self, batch: ProductBatch) -> ProductBatch:
        pass

    @abstractmethod
    async def list_available_fefo(self, variant_id: int) -> List[ProductBatch]:
        """数量 > 0 的批次，按过期时间升序（无过期时间排最后），加行锁"""
        pass

    @abstractmethod
    async def list_by_variant(
        self, variant_id: int, skip: int = 0, limit: Optional[int] = None
    ) -> List[ProductBatch]:
        """规格的全部批次（含已耗尽的），按 FEFO 顺序"""
        pass

    @abstractmethod
    async def count_by_variant(self, variant_id: int) -> int:
        pass

    @abstractmethod
    async def list_expiring(self, business_id: int, start: datetime, end: datetime) -> List[ProductBatch]:
        """过期时间落在 [start, end] 且有库存的批次"""
        pass

    @abstractmethod
    async def list_expired_with_stock(
        self, business_id: int, now: datetime, *, for_update: bool = False
    ) -> List[ProductBatch]:
        """已过期且仍有库存的批次"""
        pass

    @abstractmethod
    async def sum_quantity(self, variant_id: int) -> int:
        pass


class StockMovementRepository(ABC):
    """库存流水仓储（只追加）"""

    @abstractmethod
    async def create(self, movement: StockMovement) -> StockMovement:
        pass

    @abstractmethod
    async def list_by_variant(self, variant_id: int, skip: int = 0, limit: int = 100) -> List[StockMovement]:
        pass

    @abstractmethod
    async def count_by_variant(self, variant_id: int) -> int:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[StockMovement]:
        pass
