"""
Agent 抽象基类 - 采集 / 流水线 Agent 的统一生命周期
"""

import logging


class BaseAgent:
    """
    Agent 基类

    子类持有各自的外部资源 (浏览器 / HTTP 会话 / 数据库),
    在 startup / shutdown 钩子中统一初始化和释放。
    """

    def __init__(self, name: str):
        self.name = name
        self._initialized = False
        self.logger = logging.getLogger(f"agent.{name}")

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def startup(self):
        """Agent 启动钩子"""
        self._initialized = True
        self.logger.info("[%s] Started", self.name)

    async def shutdown(self):
        """Agent 关闭钩子"""
        self._initialized = False
        self.logger.info("[%s] Shut down", self.name)
