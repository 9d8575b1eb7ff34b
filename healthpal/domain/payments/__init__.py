"""Payment domain - VNPay payments and gateway reconciliation"""

from .service import PaymentService, ReconcileResult
from .vnpay_service import VNPayService

__all__ = ["PaymentService", "ReconcileResult", "VNPayService"]
