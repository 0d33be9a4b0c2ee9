"""構造化JSONログ

API と決済スケジューラで同じフォーマットを使い、component で出力元を区別する。
extra={"extra_data": {...}} で渡した値は data に、
extra={"recurring_donation_id": ..., "worker_id": ...} は最上位キーに出力する。
"""
import logging
import sys
import json
from datetime import datetime, timezone

# 最上位キーとして出力する extra 項目
CONTEXT_FIELDS = ("recurring_donation_id", "worker_id")


class JSONFormatter(logging.Formatter):
    """構造化JSONログフォーマッター"""

    def __init__(self, component: str = "api"):
        super().__init__()
        self.component = component

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": self.component,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value
        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data
        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Decimal / datetime は文字列化
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(debug: bool = False, component: str = "api"):
    """ロギング設定を初期化"""
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(component))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for noisy in ("sqlalchemy.engine", "apscheduler", "stripe", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """名前付きロガーを取得"""
    return logging.getLogger(name)
