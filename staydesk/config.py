"""
客户端配置
从环境变量 / .env 读取，所有时间单位为秒
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """客户端设置"""

    # 服务端地址
    API_BASE_URL: str = "http://localhost:4000"
    SOCKET_URL: Optional[str] = None  # 未设置时与 API_BASE_URL 相同

    # 支付网关（Stripe 可公开密钥）
    STRIPE_PUBLISHABLE_KEY: Optional[str] = None

    # REST 超时
    HTTP_TIMEOUT: float = 10.0
    BOOKING_CREATE_TIMEOUT: float = 15.0
    PAY_ONLINE_TIMEOUT: float = 10.0

    # 预订 / 支付流程
    PAYMENT_POLL_INTERVAL_SECONDS: int = 30
    ACTION_COALESCE_SECONDS: float = 0.3
    PAYMENT_SETTLE_SECONDS: float = 1.5
    ONLINE_DISCOUNT_PERCENT: int = 10
    CURRENCY_SYMBOL: str = "Rs."

    # 实时通知通道
    SOCKET_CONNECT_TIMEOUT: float = 10.0
    SOCKET_RECONNECT_DELAY_SECONDS: float = 1.0
    SOCKET_RECONNECT_DELAY_MAX_SECONDS: float = 30.0
    NOTIFICATION_PAGE_SIZE: int = 50

    # 日志
    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def socket_url(self) -> str:
        return self.SOCKET_URL or self.API_BASE_URL


# 全局设置实例
settings = Settings()
