"""Name-value-pair request builder for the classic PayPal API."""
from __future__ import annotations

import json
import unicodedata
from decimal import Decimal
from typing import Dict, Mapping, Optional, Union
from urllib.parse import urlencode

from .config import ApiCredentials
from .exceptions import ValidationError
from .models import to_amount

SENSITIVE_FIELDS = ("USER", "PWD", "SIGNATURE")
BILLING_TYPE = "MerchantInitiatedBillingSingleAgreement"
PAYMENT_ACTION_SALE = "Sale"
MAX_ITEM_NAME_LENGTH = 127
MAX_USD_AMOUNT = Decimal("10000.00")

ParameterValue = Union[str, int, Decimal, None]


def truncate_item_name(name: str) -> str:
    if len(name) > MAX_ITEM_NAME_LENGTH:
        return name[: MAX_ITEM_NAME_LENGTH - 3] + "..."
    return name


def to_ascii(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return normalized.encode("ascii", "ignore").decode("ascii")


def build_invoice_number(prefix: str, order_number: str) -> str:
    return f"{prefix}{to_ascii(str(order_number).lstrip('#'))}"


def build_correlation_token(order_id: str, order_key: str) -> str:
    return json.dumps({"order_id": order_id, "order_key": order_key}, separators=(",", ":"))


def format_amount(value: object) -> str:
    return f"{to_amount(value):.2f}"


class NVPRequest:
    """Accumulates request parameters and renders them for transport or logs."""

    def __init__(self, credentials: ApiCredentials, api_version: str) -> None:
        self._parameters: Dict[str, ParameterValue] = {}
        self.add_parameters(
            {
                "USER": credentials.username,
                "PWD": credentials.password,
                "SIGNATURE": credentials.signature,
                "VERSION": api_version,
            }
        )

    @property
    def method(self) -> Optional[str]:
        value = self._parameters.get("METHOD")
        return str(value) if value else None

    def add_parameter(self, key: str, value: ParameterValue) -> None:
        self._parameters[key] = value

    def add_parameters(self, params: Mapping[str, ParameterValue]) -> None:
        for key, value in params.items():
            self.add_parameter(key, value)

    def set_method(self, method: str) -> None:
        self.add_parameter("METHOD", method)

    def set_express_checkout(
        self,
        *,
        currency: str,
        return_url: str,
        cancel_url: str,
        billing_description: str,
        brand_name: str = "",
        custom: str = "",
        landing_page: str = "login",
        no_shipping: int = 1,
        maximum_amount: Optional[Decimal] = None,
    ) -> None:
        """Prepare a checkout token request for a billing agreement.

        With no order attached this is also the cheapest way to ask the
        processor whether the account may create billing agreements at all.
        """

        self.set_method("SetExpressCheckout")
        self.add_parameters(
            {
                "L_BILLINGTYPE0": BILLING_TYPE,
                "L_BILLINGAGREEMENTDESCRIPTION0": truncate_item_name(billing_description),
                "L_BILLINGAGREEMENTCUSTOM0": custom,
                "RETURNURL": return_url,
                "CANCELURL": cancel_url,
                "BRANDNAME": brand_name,
                "LANDINGPAGE": "Login" if landing_page == "login" else "Billing",
                "NOSHIPPING": no_shipping,
                "MAXAMT": maximum_amount,
                "PAYMENTREQUEST_0_CURRENCYCODE": currency,
            }
        )

    def create_billing_agreement(self, token: str) -> None:
        self.set_method("CreateBillingAgreement")
        self.add_parameter("TOKEN", token)

    def do_reference_transaction(
        self,
        reference_id: str,
        *,
        order_id: str,
        order_key: str,
        amount: Decimal,
        currency: str,
        invoice_number: str,
        item_name: str,
        notify_url: str = "",
    ) -> None:
        self.set_method("DoReferenceTransaction")
        self.add_parameters(
            {
                "REFERENCEID": reference_id,
                "RETURNFMFDETAILS": 1,
                "NOTIFYURL": notify_url,
                "PAYMENTTYPE": "Any",
                # Reference transactions still expect the pre-PAYMENTREQUEST field names.
                "L_NAME0": truncate_item_name(item_name),
                "L_AMT0": amount,
                "L_QTY0": 1,
                "AMT": amount,
                "ITEMAMT": amount,
                "CURRENCYCODE": currency,
                "INVNUM": invoice_number,
                "PAYMENTACTION": PAYMENT_ACTION_SALE,
                "PAYMENTREQUESTID": order_id,
                "CUSTOM": build_correlation_token(order_id, order_key),
            }
        )

    def parameters(self) -> Dict[str, str]:
        """Return wire-ready parameters.

        Empty values are dropped and amounts are rendered with two decimals.
        """

        currency = self._parameters.get("CURRENCYCODE") or self._parameters.get("PAYMENTREQUEST_0_CURRENCYCODE")
        rendered: Dict[str, str] = {}
        for key, value in self._parameters.items():
            if value is None or value == "":
                continue
            if "AMT" in key:
                amount = to_amount(value)
                if currency == "USD" and amount > MAX_USD_AMOUNT:
                    raise ValidationError(
                        code="amount_limit",
                        message=f"{key} amount of ${amount:,.2f} must be less than $10,000.00",
                    )
                rendered[key] = format_amount(amount)
            else:
                rendered[key] = str(value)
        return rendered

    def to_string(self) -> str:
        return urlencode(self.parameters())

    def to_string_safe(self) -> str:
        """Render for logging with credentials replaced by asterisks."""

        params = self.parameters()
        for field in SENSITIVE_FIELDS:
            if field in params:
                params[field] = "*" * len(params[field])
        return "&".join(f"{key}={value}" for key, value in params.items())


__all__ = [
    "NVPRequest",
    "build_correlation_token",
    "build_invoice_number",
    "format_amount",
    "truncate_item_name",
]
