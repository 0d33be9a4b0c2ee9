"""時刻・課金周期ユーティリティ

DBには tz なし UTC で保存する。外部入力の aware datetime は UTC に変換してから tz を落とす。
"""
from datetime import datetime, timezone
from dateutil.relativedelta import relativedelta

_PERIODS = {
    "monthly": relativedelta(months=1),
    "annually": relativedelta(years=1),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def add_period(from_date: datetime, frequency: str) -> datetime:
    """
    1周期後の日時を返す (暦上の月加算)

    月末日は加算先の月末に丸める: 1/31 + 1ヶ月 = 2/28 (閏年は 2/29)
    """
    try:
        return from_date + _PERIODS[frequency]
    except KeyError:
        raise ValueError(f"未対応の周期です: {frequency}")
