"""VNPay service - Payment URL signing and callback verification"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from ...config import (
    VNPAY_HASH_SECRET,
    VNPAY_IPN_URL,
    VNPAY_PAYMENT_EXPIRE_MINUTES,
    VNPAY_RETURN_URL,
    VNPAY_TMN_CODE,
    VNPAY_URL,
)
from ...webhook_security import compute_hmac_sha512, verify_hmac_sha512

logger = logging.getLogger(__name__)

# VNPay timestamps are wall-clock time in Vietnam (GMT+7, no DST)
VNPAY_TIMEZONE = timezone(timedelta(hours=7))
VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"

SIGNATURE_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")


def format_vnpay_date(value: datetime) -> str:
    """yyyyMMddHHmmss in VNPay's timezone"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(VNPAY_TIMEZONE).strftime(VNPAY_DATE_FORMAT)


def parse_vnpay_date(value: str) -> datetime:
    """
    Parse a yyyyMMddHHmmss gateway timestamp

    Returns:
        Naive UTC datetime, matching how timestamps are stored

    Raises:
        ValueError: If the value is not a 14 digit timestamp
    """
    parsed = datetime.strptime(value, VNPAY_DATE_FORMAT).replace(tzinfo=VNPAY_TIMEZONE)
    return parsed.astimezone(timezone.utc).replace(tzinfo=None)


def build_query_string(params: dict) -> str:
    """Key-sorted, url-encoded query string; empty values are left out"""
    return "&".join(
        f"{key}={quote_plus(str(params[key]))}"
        for key in sorted(params)
        if params[key] is not None and str(params[key]) != ""
    )


class VNPayService:
    """Builds signed VNPay payment URLs and verifies gateway callbacks"""

    VERSION = "2.1.0"
    COMMAND = "pay"
    CURRENCY_CODE = "VND"
    LOCALE = "vn"
    ORDER_TYPE = "other"

    def __init__(
        self,
        tmn_code: str = VNPAY_TMN_CODE,
        hash_secret: str = VNPAY_HASH_SECRET,
        payment_url: str = VNPAY_URL,
        return_url: str = VNPAY_RETURN_URL,
        ipn_url: str = VNPAY_IPN_URL,
        expire_minutes: int = VNPAY_PAYMENT_EXPIRE_MINUTES,
    ):
        self.tmn_code = tmn_code
        self.hash_secret = hash_secret
        self.payment_url = payment_url
        self.return_url = return_url
        self.ipn_url = ipn_url
        self.expire_minutes = expire_minutes

        if not self.tmn_code:
            logger.warning("VNPAY_TMN_CODE not set; generated payment URLs will be rejected")

    def create_payment_url(
        self,
        txn_ref: str,
        amount: Decimal,
        order_info: str,
        return_url: Optional[str] = None,
        ipn_url: Optional[str] = None,
        client_ip: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Create a signed redirect URL for the VNPay payment page

        Args:
            txn_ref: Merchant reference echoed back as vnp_TxnRef (the appointment id)
            amount: Amount in VND; VNPay expects it multiplied by 100
            order_info: Human readable order description
            return_url: Browser redirect target, defaults to VNPAY_RETURN_URL
            ipn_url: Server-to-server notification target, defaults to VNPAY_IPN_URL
            client_ip: Payer's IP address
            now: Creation time, defaults to the current time
        """
        created = now or datetime.now(timezone.utc)
        expires = created + timedelta(minutes=self.expire_minutes)

        params = {
            "vnp_Version": self.VERSION,
            "vnp_Command": self.COMMAND,
            "vnp_TmnCode": self.tmn_code,
            "vnp_Amount": str(int(Decimal(amount) * 100)),
            "vnp_CurrCode": self.CURRENCY_CODE,
            "vnp_TxnRef": txn_ref,
            "vnp_OrderInfo": order_info,
            "vnp_OrderType": self.ORDER_TYPE,
            "vnp_Locale": self.LOCALE,
            "vnp_ReturnUrl": return_url or self.return_url,
            "vnp_IpnUrl": ipn_url or self.ipn_url,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": format_vnpay_date(created),
            "vnp_ExpireDate": format_vnpay_date(expires),
        }

        query = build_query_string(params)
        secure_hash = compute_hmac_sha512(self.hash_secret, query)
        logger.info(f"💳 VNPay payment URL created for {txn_ref} (amount={params['vnp_Amount']})")
        return f"{self.payment_url}?{query}&vnp_SecureHash={secure_hash}"

    def verify_signature(self, params: dict) -> bool:
        """Recompute the hash over every vnp_* field except the signature fields"""
        signature = params.get("vnp_SecureHash")
        if not signature:
            return False

        signed = {
            key: value
            for key, value in params.items()
            if key.startswith("vnp_") and key not in SIGNATURE_FIELDS
        }
        return verify_hmac_sha512(self.hash_secret, build_query_string(signed), signature)


def get_vnpay_service() -> VNPayService:
    """Dependency injection for VNPayService"""
    return VNPayService()
