"""
通知适配器 - 默认实现将领域事件写成结构化日志
"""
from __future__ import annotations

from dataclasses import asdict, is_dataclass
from typing import Any, Sequence

from core.logging_config import get_logger


logger = get_logger(__name__)


class LoggingNotifier:
    """将领域事件输出为 ``domain_event`` 日志行"""

    async def publish(self, events: Sequence[Any]) -> None:
        for event in events:
            payload = asdict(event) if is_dataclass(event) else {"value": repr(event)}
            logger.info("domain_event", event_type=type(event).__name__, **payload)
