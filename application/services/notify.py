"""
领域事件发布 - 在 Unit of Work 提交之后调用
"""
from __future__ import annotations

from typing import Any, Optional, Sequence

from application.ports.notifier import Notifier
from core.logging_config import get_logger


logger = get_logger(__name__)


async def dispatch_events(notifier: Optional[Notifier], events: Sequence[Any]) -> None:
    """fire-and-forget：发布失败只记录日志，不影响已提交的结果"""
    if not events or notifier is None:
        return
    try:
        await notifier.publish(events)
    except Exception as exc:  # 通知渠道的任何故障都不能回滚已提交的业务
        logger.warning(
            "domain_event_dispatch_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            event_count=len(events),
        )
