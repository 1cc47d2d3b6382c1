"""
Payment Service: エラー定義
"""

from enum import Enum


class ErrorKind(str, Enum):
    GATEWAY_ERROR = "GATEWAY_ERROR"
    PAYMENT_DECLINED = "PAYMENT_DECLINED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_STATE = "INVALID_STATE"
    IN_PROGRESS = "IN_PROGRESS"
    UNEXPECTED = "UNEXPECTED"


class PaymentError(Exception):
    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidAmount(PaymentError):
    kind = ErrorKind.INVALID_AMOUNT


class InvalidPaymentState(PaymentError):
    kind = ErrorKind.INVALID_STATE


class GatewayError(PaymentError):
    """決済ゲートウェイ呼び出し自体の失敗（通信エラー・5xx など）"""
    kind = ErrorKind.GATEWAY_ERROR
