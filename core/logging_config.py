"""
Structlog 日志配置模块
"""
import logging
import json
import structlog
from structlog.processors import TimeStamper, add_log_level, JSONRenderer
from structlog.dev import ConsoleRenderer
from structlog.contextvars import merge_contextvars
from structlog.stdlib import ProcessorFormatter
from typing import Any, List

from core.config import settings


# 日志中需要脱敏的键（渠道密钥、签名、付款人手机号）
SENSITIVE_KEYS = frozenset({
    "password",
    "secret",
    "secret_key",
    "client_secret",
    "webhook_secret",
    "api_key",
    "token",
    "access_token",
    "authorization",
    "signature",
    "stripe-signature",
    "x-signature",
    "client_secret_or_params",
    "phone_number",
    "msisdn",
})


def mask_value(key: str, value: Any) -> Any:
    """对敏感键做脱敏；手机号保留末四位便于排查"""
    lowered = str(key).lower()
    if lowered not in SENSITIVE_KEYS:
        return value
    if lowered in {"phone_number", "msisdn"} and isinstance(value, str) and len(value) > 4:
        return "*" * (len(value) - 4) + value[-4:]
    return "***"


def mask_sensitive(data: Any) -> Any:
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            replacement = mask_value(key, value)
            masked[key] = mask_sensitive(value) if replacement is value else replacement
        return masked
    if isinstance(data, (list, tuple)):
        return type(data)(mask_sensitive(v) for v in data)
    return data


def _mask_processor(logger, method_name, event_dict):
    return mask_sensitive(event_dict)


def get_renderer() -> Any:
    """根据环境选择渲染器 (Console in DEBUG, JSON otherwise).
    注意：structlog 会向 serializer 传入 default/sort_keys 等参数，需要适配。
    """
    if settings.DEBUG:
        return ConsoleRenderer(colors=True)

    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default or str, **kwargs)
    return JSONRenderer(serializer=_dumps)


def configure_logging() -> None:
    """配置 structlog 并桥接标准库 logging 到同一处理链。"""
    timestamper = TimeStamper(fmt="iso")

    # 预处理链（同时用于 stdlib ProcessorFormatter 和 structlog.configure）
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        timestamper,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _mask_processor,
    ]

    structlog.configure(
        processors=[
            *shared_pre_chain,
            ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # 标准库 logging 使用 ProcessorFormatter，把 stdlib 日志（uvicorn、sqlalchemy）也纳入 structlog 渲染
    renderer = get_renderer()
    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[
            ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """获取 structlog logger 实例。"""
    return structlog.get_logger(name)


# 初始化配置
configure_logging()
