"""定期寄付の通知メール送信 (Resend)

送信失敗はログに残して False を返すのみ。決済処理の結果には影響させない。
"""
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape

from giving.core.api_keys import (
    get_resend_api_key, get_from_email, get_reply_to_email, get_organization_name, get_donor_portal_url,
)
from giving.core.logging import get_logger

logger = get_logger(__name__)

template_dir = Path(__file__).parent.parent / "templates" / "email"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html"]),
)

FREQUENCY_LABELS = {"monthly": "monthly", "annually": "annual"}


def _format_amount(amount: Decimal, currency: str) -> str:
    if currency.upper() == "USD":
        return f"${amount:,.2f}"
    return f"{amount:,.2f} {currency.upper()}"


def _send(to_email: str, subject: str, template_name: str, **context) -> bool:
    try:
        resend.api_key = get_resend_api_key()
        organization_name = get_organization_name()
        template = jinja_env.get_template(template_name)
        html = template.render(
            organization_name=organization_name, portal_url=get_donor_portal_url(), **context,
        )

        params = {
            "from": get_from_email(),
            "to": [to_email],
            "subject": f"[{organization_name}] {subject}",
            "html": html,
        }
        reply_to = get_reply_to_email()
        if reply_to:
            params["reply_to"] = reply_to
        resend.Emails.send(params)
        logger.info(f"メール送信: {template_name} → {to_email}")
        return True
    except Exception as e:
        logger.error(f"メール送信失敗: {template_name} → {to_email} - {e}")
        return False


def send_recurring_thank_you_email(
    to_email: str,
    name: str,
    amount: Decimal,
    currency: str,
    frequency: str,
    next_due_date: datetime,
) -> bool:
    """定期寄付の決済完了お礼メール"""
    return _send(
        to_email,
        "Thank you for your recurring donation",
        "recurring_thank_you.html",
        name=name,
        amount=_format_amount(amount, currency),
        frequency=FREQUENCY_LABELS.get(frequency, frequency),
        next_donation_date=f"{next_due_date:%B} {next_due_date.day}, {next_due_date.year}" if next_due_date else "-",
    )


def send_recurring_failed_email(
    to_email: str,
    name: str,
    amount: Decimal,
    currency: str,
    attempts: int,
) -> bool:
    """連続決済失敗で停止した旨の通知 (支払い方法の更新を依頼)"""
    return _send(
        to_email,
        "Action needed: your recurring donation was paused",
        "recurring_payment_failed.html",
        name=name,
        amount=_format_amount(amount, currency),
        attempts=attempts,
    )


def send_recurring_cancelled_email(
    to_email: str,
    name: str,
    amount: Decimal,
    currency: str,
    frequency: str,
) -> bool:
    """解約完了の通知"""
    return _send(
        to_email,
        "Your recurring donation has been cancelled",
        "recurring_cancelled.html",
        name=name,
        amount=_format_amount(amount, currency),
        frequency=FREQUENCY_LABELS.get(frequency, frequency),
    )
