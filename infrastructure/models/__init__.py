"""Infrastructure models package exports."""
from .base import Base, metadata
from .business import BusinessModel, BusinessMemberModel
from .inventory import ProductVariantModel, ProductBatchModel, StockMovementModel
from .order import OrderModel, OrderLineModel, OrderStatusHistoryModel
from .payment_transaction import PaymentTransactionModel
from .wallet import WalletModel, WalletTransactionModel

__all__ = [
    "Base",
    "metadata",
    "BusinessModel",
    "BusinessMemberModel",
    "ProductVariantModel",
    "ProductBatchModel",
    "StockMovementModel",
    "OrderModel",
    "OrderLineModel",
    "OrderStatusHistoryModel",
    "PaymentTransactionModel",
    "WalletModel",
    "WalletTransactionModel",
]
