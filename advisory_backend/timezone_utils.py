from __future__ import annotations

from datetime import date, datetime, time
from typing import Optional, Union

from zoneinfo import ZoneInfo

KST = ZoneInfo("Asia/Seoul")


DatetimeLike = Optional[Union[datetime, date]]


def now_kst() -> datetime:
    return datetime.now(tz=KST)


def today_kst() -> date:
    return now_kst().date()


def ensure_kst_datetime(value: DatetimeLike) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=KST)
    if value.tzinfo is None:
        # naive timestamps coming back from the store are already local
        return value.replace(tzinfo=KST)
    return value.astimezone(KST)
