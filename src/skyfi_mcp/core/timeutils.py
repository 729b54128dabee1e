"""
时间工具
"""

from datetime import datetime, timezone


def utc_now_iso() -> str:
    """当前 UTC 时间的 ISO-8601 字符串（毫秒精度，Z 结尾）"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
