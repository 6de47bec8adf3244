"""
认证鉴权模块 - CRON_SECRET 共享密钥

支持:
  1. Authorization: Bearer <CRON_SECRET>
  2. ?secret=<CRON_SECRET> 查询参数 (供只能配置 URL 的外部定时器使用)
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gram_trends.config.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class AuthContext:
    """请求认证上下文"""
    auth_method: str    # "bearer" | "query"


_bearer_scheme = HTTPBearer(auto_error=False)


def secret_matches(candidate: Optional[str], secret: Optional[str] = None) -> bool:
    expected = settings.auth.cron_secret if secret is None else secret
    if not expected or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), expected.encode())


async def require_cron_secret(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthContext:
    """认证依赖 - 未配置 CRON_SECRET 时一律拒绝"""
    if not settings.auth.cron_secret:
        logger.warning("CRON_SECRET not configured, rejecting %s", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")

    if credentials and secret_matches(credentials.credentials):
        return AuthContext(auth_method="bearer")

    if secret_matches(request.query_params.get("secret")):
        return AuthContext(auth_method="query")

    raise HTTPException(
        status_code=401,
        detail="Unauthorized. Use Authorization: Bearer <CRON_SECRET> or ?secret=.",
    )
