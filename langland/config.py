"""
LangLand 配置管理模块

统一管理所有服务配置，支持环境变量
"""

from dataclasses import dataclass, field
from typing import Optional
import os
from functools import lru_cache


@dataclass
class ServerConfig:
    """服务器配置"""
    host: str = "0.0.0.0"
    port: int = 3000                # WebSocket + HTTP 共用端口
    debug: bool = False
    log_level: str = "INFO"
    structured_logging: bool = False


@dataclass
class LLMConfig:
    """AI 服务配置 (OpenAI 兼容接口, 默认 DashScope)"""
    base_url: str = "https://dashscope.aliyuncs.com/compatible-mode/v1"
    api_key: str = ""

    # 模型配置
    model: str = "qwen-flash"

    # 生成参数
    enrich_max_tokens: int = 100
    enrich_enhanced_max_tokens: int = 150
    translate_max_tokens: int = 200
    analysis_max_tokens: int = 500
    definition_max_tokens: int = 150

    # 超时配置 (秒)
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)


@dataclass
class DatabaseConfig:
    """MySQL 数据库配置"""
    host: str = "localhost"
    port: int = 3306
    user: str = "langland"
    password: str = ""
    database: str = "langland"
    pool_size: int = 5
    pool_recycle: int = 3600

    @property
    def url(self) -> str:
        """SQLAlchemy 连接 URL"""
        return f"mysql+aiomysql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass
class RedisConfig:
    """Redis 配置 (查词计数)"""
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    max_connections: int = 20

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


@dataclass
class VocabularyConfig:
    """词汇熟练度配置"""
    # 单用户模式: 当前浏览器配置对应的用户 ID
    user_id: int = 1

    # 自动提升熟练度策略: 累计多少次查词提升一级
    encounter_threshold: int = 1

    # 计数窗口 (秒)，0 表示累计不过期
    encounter_window_seconds: int = 0


@dataclass
class RelayConfig:
    """消息中继配置"""
    # 客户端请求超时 (秒)
    request_timeout: float = 30.0

    # 流式会话单块发送超时 (秒)
    send_timeout: float = 5.0


@dataclass
class Settings:
    """全局配置"""
    server: ServerConfig = field(default_factory=ServerConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    vocabulary: VocabularyConfig = field(default_factory=VocabularyConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        """从环境变量加载配置"""
        return cls(
            server=ServerConfig(
                host=os.getenv("SERVER_HOST", "0.0.0.0"),
                port=int(os.getenv("SERVER_PORT", "3000")),
                debug=os.getenv("DEBUG", "false").lower() == "true",
                log_level=os.getenv("LOG_LEVEL", "INFO"),
                structured_logging=os.getenv("LOG_STRUCTURED", "false").lower() == "true",
            ),
            llm=LLMConfig(
                base_url=os.getenv("LLM_BASE_URL", "https://dashscope.aliyuncs.com/compatible-mode/v1"),
                api_key=os.getenv("DASHSCOPE_API_KEY", ""),
                model=os.getenv("LLM_MODEL", "qwen-flash"),
                timeout=int(os.getenv("LLM_TIMEOUT", "30")),
            ),
            database=DatabaseConfig(
                host=os.getenv("MYSQL_HOST", "localhost"),
                port=int(os.getenv("MYSQL_PORT", "3306")),
                user=os.getenv("MYSQL_USER", "langland"),
                password=os.getenv("MYSQL_PASSWORD", ""),
                database=os.getenv("MYSQL_DATABASE", "langland"),
            ),
            redis=RedisConfig(
                host=os.getenv("REDIS_HOST", "localhost"),
                port=int(os.getenv("REDIS_PORT", "6379")),
                password=os.getenv("REDIS_PASSWORD"),
                db=int(os.getenv("REDIS_DB", "0")),
            ),
            vocabulary=VocabularyConfig(
                user_id=int(os.getenv("LANGLAND_USER_ID", "1")),
                encounter_threshold=int(os.getenv("ENCOUNTER_THRESHOLD", "1")),
                encounter_window_seconds=int(os.getenv("ENCOUNTER_WINDOW_SECONDS", "0")),
            ),
            relay=RelayConfig(
                request_timeout=float(os.getenv("RELAY_REQUEST_TIMEOUT", "30")),
                send_timeout=float(os.getenv("RELAY_SEND_TIMEOUT", "5")),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """获取全局配置单例"""
    return Settings.from_env()
