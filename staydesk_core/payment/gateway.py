"""
支付网关接口 - 域无关的卡支付确认抽象

app 层通过实现 IPaymentGateway 来对接具体网关（Stripe 等）。
网关只负责把一次性的 client secret 变成"成功 / 拒绝"结果，
失败时抛出 staydesk_core.errors.GatewayError。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class PaymentResult:
    """
    支付确认结果

    Attributes:
        status: 网关返回的支付意图状态
        payment_intent_id: 支付意图 ID
    """

    status: str
    payment_intent_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        """只有字面值 "succeeded" 视为成功"""
        return self.status == SUCCEEDED


class IPaymentGateway(ABC):
    """支付网关接口"""

    @abstractmethod
    def confirm_card_payment(self, client_secret: str, payment_method: str) -> PaymentResult:
        """使用 client secret 确认一次卡支付

        Args:
            client_secret: 网关签发的一次性句柄
            payment_method: 卡支付方式标识（由网关前端组件生成）

        Returns:
            成功的 PaymentResult

        Raises:
            GatewayError: 网关拒绝、卡片错误或状态不是 succeeded
        """

    @abstractmethod
    def get_gateway_type(self) -> str:
        """返回网关类型标识，如 'stripe'"""
