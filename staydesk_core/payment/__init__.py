"""
支付网关抽象层 - 仅定义接口，app 层实现具体网关
"""
from staydesk_core.payment.gateway import IPaymentGateway, PaymentResult, SUCCEEDED

__all__ = ["IPaymentGateway", "PaymentResult", "SUCCEEDED"]
