"""
全局配置 - GramTrends 采集 Worker 运行参数
支持通过环境变量切换 开发/测试/生产 环境
"""

import os
from dataclasses import dataclass, field


def _parse_tag_limit(raw: str, default: int = 15, hard_cap: int = 50) -> int:
    """
    Parse AI_TAG_LIMIT. Non-numeric or non-positive values fall back to the
    default, anything above the hard cap is clamped.
    """
    try:
        value = int(float((raw or "").strip()))
    except (ValueError, OverflowError):
        return default
    if value <= 0:
        return default
    return min(value, hard_cap)


@dataclass
class ScraperConfig:
    """浏览器抓取配置 (主数据源)"""
    platform: str = os.getenv("TREND_PLATFORM", "tiktok")
    target_url: str = os.getenv(
        "SCRAPER_TARGET_URL",
        "https://ads.tiktok.com/business/creativecenter/inspiration/popular/music/pc/en",
    )
    # Empty -> launch a local headless Chromium instead of attaching over CDP.
    browser_ws_endpoint: str = os.getenv("SCRAPER_BROWSER_WS_ENDPOINT", "")
    navigation_timeout_seconds: float = float(os.getenv("SCRAPER_NAVIGATION_TIMEOUT_SECONDS", "30"))
    selector_timeout_seconds: float = float(os.getenv("SCRAPER_SELECTOR_TIMEOUT_SECONDS", "20"))
    user_agent: str = os.getenv(
        "SCRAPER_USER_AGENT",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )
    max_items: int = int(os.getenv("SCRAPER_MAX_ITEMS", "50"))
    retry_max_attempts: int = int(os.getenv("SCRAPER_RETRY_MAX_ATTEMPTS", "3"))
    retry_base_delay_ms: int = int(os.getenv("SCRAPER_RETRY_BASE_DELAY_MS", "1000"))
    retry_max_delay_ms: int = int(os.getenv("SCRAPER_RETRY_MAX_DELAY_MS", "10000"))
    circuit_breaker_failure_threshold: int = int(os.getenv("SCRAPER_CIRCUIT_BREAKER_FAILURE_THRESHOLD", "5"))
    circuit_breaker_open_seconds: float = float(os.getenv("SCRAPER_CIRCUIT_BREAKER_OPEN_SECONDS", "300"))


@dataclass
class ProxyGridConfig:
    """Proxy Grid 备用数据源配置"""
    base_url: str = os.getenv("PROXY_GRID_BASE", "http://google.savedimage.com")
    secret: str = os.getenv("PROXY_GRID_SECRET", "")
    search_endpoint: str = os.getenv("PROXY_GRID_SEARCH_ENDPOINT", "/api/search")
    request_timeout_seconds: float = float(os.getenv("PROXY_GRID_TIMEOUT_SECONDS", "30"))
    max_retries: int = int(os.getenv("PROXY_GRID_MAX_RETRIES", "3"))
    cache_ttl_seconds: float = float(os.getenv("PROXY_GRID_CACHE_TTL_SECONDS", str(4 * 60 * 60)))


@dataclass
class TaggerConfig:
    """音频风格标注配置"""
    tag_limit: int = field(default_factory=lambda: _parse_tag_limit(os.getenv("AI_TAG_LIMIT", "15")))
    llm_enabled: bool = os.getenv("TAGGER_LLM_ENABLED", "true").lower() == "true"
    placeholder_genre: str = "unknown"
    placeholder_vibe: str = "mixed"


@dataclass
class LLMConfig:
    """LLM 服务配置"""
    primary_backend: str = os.getenv("LLM_PRIMARY_BACKEND", "openai")
    # OpenAI-compatible
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    # Ollama
    ollama_base_url: str = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3:8b")
    # Generation params
    temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.2"))
    max_tokens: int = int(os.getenv("LLM_MAX_TOKENS", "128"))
    # Reliability
    retry_max_attempts: int = int(os.getenv("LLM_RETRY_MAX_ATTEMPTS", "2"))
    retry_base_delay_seconds: float = float(os.getenv("LLM_RETRY_BASE_DELAY_SECONDS", "0.5"))
    timeout_seconds: float = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
    # Fallback
    fallback_enabled: bool = os.getenv("LLM_FALLBACK_ENABLED", "false").lower() == "true"
    fallback_backend: str = os.getenv("LLM_FALLBACK_BACKEND", "ollama")


@dataclass
class AlertConfig:
    """告警 Webhook 配置"""
    webhook_url: str = os.getenv("SLACK_WEBHOOK_URL", "")
    message_prefix: str = os.getenv("ALERT_MESSAGE_PREFIX", "GramDominator")
    timeout_seconds: float = float(os.getenv("ALERT_TIMEOUT_SECONDS", "10"))


@dataclass
class HashtagConfig:
    """话题标签旁路采集配置"""
    api_url: str = os.getenv("HASHTAG_API_URL", "")
    user_agent: str = os.getenv("HASHTAG_USER_AGENT", "GramDominatorBot/1.0")
    timeout_seconds: float = float(os.getenv("HASHTAG_TIMEOUT_SECONDS", "20"))


@dataclass
class DatabaseConfig:
    """数据库配置"""
    url: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///gram_trends.db")
    echo: bool = os.getenv("DB_ECHO", "false").lower() == "true"


@dataclass
class SchedulerConfig:
    """定时调度配置"""
    enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    cron_expression: str = os.getenv("SCHEDULER_CRON", "0 */6 * * *")
    timezone: str = os.getenv("SCHEDULER_TIMEZONE", "UTC")
    misfire_grace_time: int = int(os.getenv("SCHEDULER_MISFIRE_GRACE", "300"))


@dataclass
class AuthConfig:
    """认证配置"""
    cron_secret: str = os.getenv("CRON_SECRET", "")


@dataclass
class AppConfig:
    """应用总配置"""
    app_name: str = "gram_trends"
    env: str = os.getenv("APP_ENV", "development")
    debug: bool = os.getenv("DEBUG", "true").lower() == "true"
    host: str = "0.0.0.0"
    port: int = int(os.getenv("PORT", "8090"))

    scraper: ScraperConfig = field(default_factory=ScraperConfig)
    proxy_grid: ProxyGridConfig = field(default_factory=ProxyGridConfig)
    tagger: TaggerConfig = field(default_factory=TaggerConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    alert: AlertConfig = field(default_factory=AlertConfig)
    hashtag: HashtagConfig = field(default_factory=HashtagConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)


# 全局配置单例
settings = AppConfig()
