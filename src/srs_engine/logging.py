"""Logging utilities.

構造化ログ（structlog + JSON）の初期化と共有ロガーを提供する。
カードの front/back はログへ出力しない方針のため、ペイロード系キーは
レンダリング前に除去する。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_PAYLOAD_KEYS = ("front", "back")


def _drop_card_payload(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove opaque card payload fields from a log event."""

    for key in _PAYLOAD_KEYS:
        event_dict.pop(key, None)
    return event_dict


def _resolve_level(name: str | None) -> int:
    level = logging.getLevelName((name or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str | None = None) -> None:
    """Configure structlog for application-wide logging.

    標準 logging を初期化し、structlog で ISO タイムスタンプと JSON 形式の
    出力を有効化する。レベルは引数、未指定時は settings.log_level を使う。
    """
    # stdlib 側の出力に余計なプレフィックスを付けないため、フォーマットは
    # メッセージのみ(%(message)s)に固定する。
    logging.basicConfig(
        level=_resolve_level(level or settings.log_level),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog_contextvars.merge_contextvars,
            _drop_card_payload,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger()
