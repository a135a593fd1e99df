"""
Stripe 支付网关 - 实现 core 层 IPaymentGateway 接口

客户端只持有可公开密钥：用 client secret 对应的支付意图做一次确认，
只有返回状态为 "succeeded" 才算成功，其余任何状态或错误都视为拒绝。
"""
import logging
from typing import Optional

import stripe

from staydesk_core.errors import GatewayError
from staydesk_core.payment import IPaymentGateway, PaymentResult
from staydesk.config import settings

logger = logging.getLogger(__name__)

SECRET_MARKER = "_secret_"


def intent_id_from_secret(client_secret: str) -> str:
    """pi_123_secret_abc -> pi_123"""
    if not client_secret or SECRET_MARKER not in client_secret:
        raise GatewayError("Invalid payment session. Please try again.")
    return client_secret.split(SECRET_MARKER, 1)[0]


class StripeGateway(IPaymentGateway):
    """基于 stripe 库的卡支付确认"""

    def __init__(self, publishable_key: Optional[str] = None):
        self.publishable_key = publishable_key if publishable_key is not None else settings.STRIPE_PUBLISHABLE_KEY

    def confirm_card_payment(self, client_secret: str, payment_method: str) -> PaymentResult:
        """确认卡支付

        Args:
            client_secret: booking-create / pay-online 返回的 client secret
            payment_method: Stripe 支付方式 ID（pm_...）
        """
        if not self.publishable_key:
            raise GatewayError("Payment configuration missing.")
        if not payment_method:
            raise GatewayError("Payment form not properly loaded. Please try again.")

        intent_id = intent_id_from_secret(client_secret)
        try:
            intent = stripe.PaymentIntent.confirm(
                intent_id,
                client_secret=client_secret,
                payment_method=payment_method,
                api_key=self.publishable_key,
            )
        except stripe.StripeError as e:
            message = e.user_message or str(e) or GatewayError.default_message
            logger.info(f"Stripe declined payment intent {intent_id}: {message}")
            raise GatewayError(message, code=e.code, context={"payment_intent_id": intent_id}) from e

        status = getattr(intent, "status", None)
        result = PaymentResult(status=status or "unknown", payment_intent_id=intent_id)
        if not result.succeeded:
            logger.info(f"Payment intent {intent_id} finished with status {result.status}")
            raise GatewayError(
                f"Payment was not completed (status: {result.status})",
                code=result.status,
                context={"payment_intent_id": intent_id},
            )
        logger.info(f"Payment intent {intent_id} succeeded")
        return result

    def get_gateway_type(self) -> str:
        return "stripe"
