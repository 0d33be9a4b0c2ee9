"""金額ユーティリティ (Decimal / 小数2桁)"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """任意の数値表現を小数2桁のDecimalへ (float は文字列経由で変換)"""
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValueError(f"金額として解釈できません: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"金額として解釈できません: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def has_sub_cent(value) -> bool:
    """小数3桁以下の端数を含むか"""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount != amount.quantize(CENT)


def to_minor_units(amount: Decimal) -> int:
    """ゲートウェイ送信用: ドル → セント"""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
