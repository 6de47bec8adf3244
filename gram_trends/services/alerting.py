"""
告警通知 - Slack 兼容 Webhook, fire-and-forget

notify() 只负责调度后台任务, 立即返回; 发送失败只记录日志。
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Set

import aiohttp

from gram_trends.config.settings import settings

logger = logging.getLogger(__name__)


class AlertNotifier:
    """降级路径告警"""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        prefix: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.webhook_url = settings.alert.webhook_url if webhook_url is None else webhook_url
        self.prefix = prefix or settings.alert.message_prefix
        self._session = session
        self._pending: Set[asyncio.Task] = set()

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=settings.alert.timeout_seconds),
            )
        return self._session

    def build_payload(self, message: str) -> dict:
        return {
            "text": f"{self.prefix} alert: {message}",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def notify(self, message: str) -> Optional[asyncio.Task]:
        if not self.configured:
            logger.debug("Alert webhook not configured, dropping: %s", message)
            return None
        task = asyncio.get_running_loop().create_task(self._send(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _send(self, message: str):
        try:
            session = await self._get_session()
            async with session.post(self.webhook_url, json=self.build_payload(message)) as resp:
                if resp.status >= 400:
                    logger.error("Alert webhook returned %d", resp.status)
                    return
            logger.info("Alert sent: %s", message)
        except Exception as e:
            logger.error("Failed to send alert: %s", e)

    async def drain(self):
        """Wait for in-flight alerts, used on shutdown and in tests."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self):
        await self.drain()
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
