# uiflow/core/config.py
from dotenv import load_dotenv
load_dotenv(".env")
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, computed_field
from typing import Optional, Literal

class Settings(BaseSettings):
    # model_config 会自动加载 .env 文件
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # 应用配置
    APP_ENV: Literal["development", "test", "production"] = "production"

    @computed_field
    @property
    def is_development(self) -> bool:
        # 开发环境下沙箱违规直接抛出，生产环境按 fail-closed 处理
        return self.APP_ENV == "development"

    # --- Expression Engine ---
    EXPRESSION_CACHE_SIZE: int = Field(512, ge=1, description="每个表达式引擎实例的 LRU 解析缓存容量")
    DIVISION_BY_ZERO_SENTINEL: Optional[float] = Field(None, description="除零时返回的哨兵值")

    # --- Action Orchestrator ---
    FOREACH_MAX_CONCURRENCY: int = Field(10, ge=1, description="forEach(parallel) 的并发上限")
    ACTION_DEFAULT_TIMEOUT_MS: Optional[int] = Field(None, description="叶子动作未声明 timeout 时的默认超时")
    ACTION_MAX_DEPTH: int = Field(32, ge=1, description="动作树允许的最大嵌套深度")
    RETRY_MAX_DELAY_MS: int = Field(30000, ge=0, description="单次重试等待的上限")
    RETRY_JITTER_RATIO: float = Field(0.0, ge=0.0, le=1.0, description="重试等待的随机抖动比例")

    # --- Reactive Field Engine ---
    VALIDATION_DEBOUNCE_MS: int = Field(0, ge=0, description="异步校验器的默认防抖时间")

settings = Settings()
