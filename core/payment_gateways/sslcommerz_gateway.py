"""
SSLCommerz Redirect Gateway

Redirect-based gateway for the SSLCommerz hosted payment page. The payer is
sent to `GatewayPageURL`; the outcome comes back through the browser
callback (success/fail/cancel), the server-to-server IPN, and the optional
verify call. Each of those carries a `val_id` which is authenticated against
the Order Validation API before anything is trusted.

APIs used:
- Session init:        POST {base}/gwprocess/v4/api.php
- Order validation:    GET  {base}/validator/api/validationserverAPI.php
- Transaction query:   GET  {base}/validator/api/merchantTransIDvalidationAPI.php?tran_id=
- Refund:              GET  {base}/validator/api/merchantTransIDvalidationAPI.php?bank_tran_id=

Author: DSP Development Team
Version: 1.0.0
"""

import logging
import secrets
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from core.exceptions import ConfigurationError, GatewayError

from .base import (
    FLOW_REDIRECT,
    GatewayClient,
    InitiationResult,
    ProviderStatus,
    RefundResult,
    StatusResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

VALID_STATUSES = ("VALID", "VALIDATED")
AMBIGUOUS_STATUS = "INVALID_TRANSACTION"


def generate_transaction_ref() -> str:
    return f"TXN-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def parse_amount(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        return None


class SSLCommerzRedirectGateway(GatewayClient):
    """
    Client for the SSLCommerz v4 API.

    Args:
        store_id: Merchant store id
        store_password: Merchant store password
        is_live: Use the production host instead of the sandbox
        server_url: Public base URL of this backend (callback/IPN targets)
        timeout: Per-request timeout in seconds
        session: Optional `requests.Session`, injected by tests
    """

    name = "sslcommerz"
    flow = FLOW_REDIRECT

    LIVE_BASE_URL = "https://securepay.sslcommerz.com"
    SANDBOX_BASE_URL = "https://sandbox.sslcommerz.com"

    def __init__(
        self,
        store_id: str,
        store_password: str,
        is_live: bool = False,
        server_url: str = "",
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.store_id = store_id
        self.store_password = store_password
        self.live_mode = is_live
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def base_url(self) -> str:
        return self.LIVE_BASE_URL if self.live_mode else self.SANDBOX_BASE_URL

    def _validate_credentials(self) -> None:
        missing = []
        if not self.store_id:
            missing.append("SSLCOMMERZ_STORE_ID")
        if not self.store_password:
            missing.append("SSLCOMMERZ_STORE_PASSWORD")
        if missing:
            raise ConfigurationError(
                f"Missing SSLCommerz credentials in environment: {', '.join(missing)}"
            )

    def _credentials(self) -> Dict[str, str]:
        self._validate_credentials()
        return {"store_id": self.store_id, "store_passwd": self.store_password}

    def callback_urls(self) -> Dict[str, str]:
        base = f"{self.server_url}/api/elearning/payments/redirect"
        return {
            "success_url": f"{base}/callback/success/",
            "fail_url": f"{base}/callback/fail/",
            "cancel_url": f"{base}/callback/cancel/",
            "ipn_url": f"{base}/ipn/",
        }

    # ---------- GatewayClient ----------

    def initiate(self, amount, currency, metadata):
        metadata = dict(metadata or {})
        transaction_ref = metadata.pop("transaction_ref", None) or generate_transaction_ref()
        form = {
            **self._credentials(),
            "total_amount": f"{Decimal(amount):.2f}",
            "currency": currency.upper(),
            "tran_id": transaction_ref,
            **self.callback_urls(),
            "shipping_method": "NO",
            "product_name": metadata.get("product_name", "Course Enrollment"),
            "product_category": "Education",
            "product_profile": "non-physical-goods",
            "cus_name": metadata.get("customer_name") or "Student",
            "cus_email": metadata.get("customer_email") or "",
            "cus_add1": metadata.get("customer_address") or "N/A",
            "cus_city": metadata.get("customer_city") or "N/A",
            "cus_country": metadata.get("customer_country") or "N/A",
            "cus_phone": metadata.get("customer_phone") or "N/A",
            "value_a": metadata.get("payment_id", ""),
            "value_b": metadata.get("enrollment_id", ""),
            "value_c": metadata.get("user_id", ""),
            "value_d": metadata.get("course_id", ""),
        }
        data = self._request("post", "/gwprocess/v4/api.php", data=form)
        if data.get("status") != "SUCCESS" or not data.get("GatewayPageURL"):
            reason = data.get("failedreason") or "Payment session initialization failed"
            logger.warning("SSLCommerz init rejected for %s: %s", transaction_ref, reason)
            raise GatewayError(reason, GatewayError.KIND_INVALID_REQUEST, self.name)

        logger.info("SSLCommerz session %s created for %s", data.get("sessionkey"), transaction_ref)
        return InitiationResult(
            transaction_ref=transaction_ref,
            redirect_url=data["GatewayPageURL"],
            raw={"sessionkey": data.get("sessionkey")},
        )

    def validate(self, validation_ref):
        params = {**self._credentials(), "val_id": validation_ref, "format": "json", "v": "1"}
        data = self._request("get", "/validator/api/validationserverAPI.php", params=params)
        raw_status = (data.get("status") or "").upper()
        amount, currency = self._original_amount(data)
        return ValidationResult(
            valid=raw_status in VALID_STATUSES,
            amount=amount,
            currency=currency,
            raw_status=raw_status,
            transaction_ref=data.get("tran_id"),
            gateway_transaction_ref=data.get("bank_tran_id"),
            ambiguous=raw_status == AMBIGUOUS_STATUS,
            raw={k: data.get(k) for k in ("card_type", "store_amount", "val_id", "risk_level")},
        )

    def query_transaction(self, transaction_ref: str) -> List[Dict[str, Any]]:
        """Return every session record SSLCommerz holds for `transaction_ref`."""
        params = {**self._credentials(), "tran_id": transaction_ref, "format": "json"}
        data = self._request("get", "/validator/api/merchantTransIDvalidationAPI.php", params=params)
        self._check_api_connect(data)
        return data.get("element") or []

    def retrieve_status(self, transaction_ref):
        elements = self.query_transaction(transaction_ref)
        for element in elements:
            if (element.get("status") or "").upper() in VALID_STATUSES:
                amount, currency = self._original_amount(element)
                return StatusResult(
                    status=ProviderStatus.SUCCEEDED,
                    amount=amount,
                    currency=currency,
                    gateway_transaction_ref=element.get("bank_tran_id"),
                    validation_ref=element.get("val_id"),
                    raw={"status": element.get("status")},
                )
        statuses = {(e.get("status") or "").upper() for e in elements}
        if not elements or "PENDING" in statuses:
            return StatusResult(status=ProviderStatus.PENDING, raw={"statuses": sorted(statuses)})
        return StatusResult(
            status=ProviderStatus.FAILED,
            error_detail=", ".join(sorted(statuses)),
            raw={"statuses": sorted(statuses)},
        )

    def refund(self, transaction_ref, amount, reason="", gateway_transaction_ref=None):
        if not gateway_transaction_ref:
            raise GatewayError(
                "Bank transaction id is required for SSLCommerz refunds",
                GatewayError.KIND_INVALID_REQUEST,
                self.name,
            )
        params = {
            **self._credentials(),
            "bank_tran_id": gateway_transaction_ref,
            "refund_amount": f"{Decimal(amount):.2f}",
            "refund_remarks": reason or "Refund",
            "refe_id": transaction_ref,
            "format": "json",
        }
        data = self._request("get", "/validator/api/merchantTransIDvalidationAPI.php", params=params)
        self._check_api_connect(data)
        status = (data.get("status") or "").lower()
        if status not in ("success", "processing"):
            raise GatewayError(
                data.get("errorReason") or "SSLCommerz refund failed",
                GatewayError.KIND_DECLINED,
                self.name,
            )
        logger.info("SSLCommerz refund %s accepted for %s", data.get("refund_ref_id"), transaction_ref)
        return RefundResult(refund_ref=data.get("refund_ref_id") or "", status=status)

    # ---------- helpers ----------

    @staticmethod
    def _original_amount(data: Dict[str, Any]):
        # currency_type/currency_amount hold the merchant's currency; amount/currency are BDT
        if data.get("currency_type") and data.get("currency_amount"):
            return parse_amount(data["currency_amount"]), data["currency_type"].upper()
        return parse_amount(data.get("amount")), (data.get("currency") or "").upper()

    def _check_api_connect(self, data: Dict[str, Any]) -> None:
        api_connect = (data.get("APIConnect") or "DONE").upper()
        if api_connect == "DONE":
            return
        if api_connect == "INACTIVE":
            raise GatewayError("SSLCommerz store is inactive", GatewayError.KIND_AUTH, self.name)
        raise GatewayError(
            f"SSLCommerz API rejected the request ({api_connect})",
            GatewayError.KIND_INVALID_REQUEST,
            self.name,
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            logger.debug("SSLCommerz %s %s", method.upper(), url)
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.warning("SSLCommerz request timed out: %s", e)
            raise GatewayError("SSLCommerz request timed out", GatewayError.KIND_CONNECTION, self.name)
        except requests.exceptions.ConnectionError as e:
            logger.warning("SSLCommerz unreachable: %s", e)
            raise GatewayError("SSLCommerz is unreachable", GatewayError.KIND_CONNECTION, self.name)
        except requests.exceptions.HTTPError as e:
            kind = (
                GatewayError.KIND_API_ERROR
                if e.response is not None and e.response.status_code >= 500
                else GatewayError.KIND_INVALID_REQUEST
            )
            logger.error("SSLCommerz HTTP error: %s", e)
            raise GatewayError(f"SSLCommerz HTTP error: {e}", kind, self.name)
        except ValueError as e:
            logger.error("Invalid SSLCommerz response: %s", e)
            raise GatewayError("Invalid response from SSLCommerz", GatewayError.KIND_API_ERROR, self.name)
