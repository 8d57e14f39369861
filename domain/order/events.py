"""
订单领域事件
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid


@dataclass
class OrderCreated:
    order_id: int
    order_number: str
    order_type: str
    total_amount: str
    customer_id: int
    business_id: int
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderStatusChanged:
    order_id: int
    from_status: str
    to_status: str
    triggered_by: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
