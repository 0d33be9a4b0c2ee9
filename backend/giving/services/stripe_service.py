"""決済ゲートウェイ (Stripe)

スケジューラからは PaymentGateway として注入して使う (テストでは差し替え)。
ゲートウェイ起因の失敗は例外ではなく ChargeResult(success=False) で返す。
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

import stripe
from sqlalchemy.orm import Session

from giving.core.api_keys import get_stripe_secret_key, get_statement_descriptor
from giving.core.money import to_minor_units
from giving.core.security import mask_token
from giving.core.logging import get_logger
from giving.services import settlement_store

logger = get_logger(__name__)


@dataclass
class ChargeResult:
    success: bool
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None


class PaymentGateway(Protocol):
    def charge(
        self,
        amount: Decimal,
        currency: str,
        token: str,
        reference: str,
        description: str,
        customer_email: Optional[str] = None,
    ) -> ChargeResult:
        ...


def _init_stripe():
    stripe.api_key = get_stripe_secret_key()


def _split_token(token: str) -> tuple[Optional[str], str]:
    """'cus_xxx/pm_xxx' 形式なら (customer, payment_method) に分解"""
    if "/" in token:
        customer_id, payment_method_id = token.split("/", 1)
        return customer_id or None, payment_method_id
    return None, token


class StripeGateway:
    """Stripe PaymentIntent によるオフセッション課金"""

    def charge(
        self,
        amount: Decimal,
        currency: str,
        token: str,
        reference: str,
        description: str,
        customer_email: Optional[str] = None,
    ) -> ChargeResult:
        _init_stripe()
        customer_id, payment_method_id = _split_token(token)
        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "payment_method": payment_method_id,
            "confirm": True,
            "off_session": True,
            "description": description,
            "metadata": {"reference": reference},
        }
        if customer_id:
            params["customer"] = customer_id
        if customer_email:
            params["receipt_email"] = customer_email
        descriptor = get_statement_descriptor()
        if descriptor:
            params["statement_descriptor_suffix"] = descriptor

        try:
            # reference を冪等キーにし、同一サイクルの再送で二重課金しない
            intent = stripe.PaymentIntent.create(idempotency_key=reference, **params)
        except stripe.CardError as e:
            logger.warning(f"Stripeカード拒否: reference={reference}, payment_method={mask_token(payment_method_id)}, code={e.code}")
            return ChargeResult(success=False, error_message=e.user_message or "Card declined")
        except stripe.StripeError as e:
            logger.error(f"Stripe決済エラー: reference={reference} - {e}")
            return ChargeResult(success=False, error_message=e.user_message or "Payment gateway error")

        if intent.status != "succeeded":
            logger.warning(f"Stripe決済未完了: reference={reference}, status={intent.status}")
            return ChargeResult(
                success=False,
                transaction_id=intent.id,
                error_message=f"Payment not completed (status: {intent.status})",
            )

        logger.info(f"Stripe決済成功: reference={reference}, payment_intent={intent.id}")
        return ChargeResult(success=True, transaction_id=intent.id)


def transaction_details(db: Session, transaction_id: str) -> Optional[int]:
    """ゲートウェイ取引ID → 社内決済台帳ID"""
    if not transaction_id:
        return None
    txn = settlement_store.get_transaction_by_gateway_id(db, transaction_id)
    return txn.id if txn else None
