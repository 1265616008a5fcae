"""签名 URL 的摘要计算，与 nginx secure_link 模块的 md5 方案一致。

摘要为 ``base64url(md5(f"{expires}{uri} {secret}"))``，去掉末尾的 ``=``。
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from enum import IntEnum
from typing import Optional
from urllib.parse import urlencode


class LinkStatus(IntEnum):
    """校验方返回的 HTTP 状态码。"""

    OK = 200
    FORBIDDEN = 403
    GONE = 410


def secure_link_digest(expires: int, uri: str, secret: str) -> str:
    payload = f"{expires}{uri} {secret}".encode("utf-8")
    digest = hashlib.md5(payload).digest()  # noqa: S324
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def signed_url(uri: str, secret: str, expires: int) -> str:
    """生成带 ``md5`` 与 ``expires`` 查询参数的相对 URL。"""

    query = urlencode({"md5": secure_link_digest(expires, uri, secret), "expires": expires})
    return f"{uri}?{query}"


def check_signed_request(
    uri: str,
    digest: Optional[str],
    expires: int,
    secret: str,
    now: Optional[float] = None,
) -> LinkStatus:
    """按校验方的规则判定请求：摘要缺失或不符为 403，摘要正确但过期为 410。"""

    if not digest:
        return LinkStatus.FORBIDDEN
    expected = secure_link_digest(expires, uri, secret)
    if not hmac.compare_digest(expected, digest):
        return LinkStatus.FORBIDDEN
    current = time.time() if now is None else now
    if current > expires:
        return LinkStatus.GONE
    return LinkStatus.OK
