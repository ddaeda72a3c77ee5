from decimal import Decimal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # 数据库配置
    database_url: str = "duckdb://./data/mealcard.duckdb"

    # JWT配置
    jwt_secret_key: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7天

    # API配置
    api_title: str = "Campus MealCard API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # 服务监听
    host: str = "127.0.0.1"
    port: int = 8000

    # 日志配置
    log_level: str = "INFO"
    log_json: bool = False

    # 并发冲突重试
    conflict_retries: int = 3
    conflict_retry_delay: float = 0.01

    # 金额精度与上限，与 DECIMAL(12,2) 列一致
    currency_quantum: Decimal = Decimal("0.01")
    max_amount: Decimal = Decimal("9999999999.99")

    # 开发模式
    debug: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

# 全局设置实例
settings = Settings()
