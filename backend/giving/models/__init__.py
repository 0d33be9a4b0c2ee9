# 全モデルをインポート (Alembic autogenerate用)
from giving.models.user import User
from giving.models.donor import Donor
from giving.models.campaign import Campaign
from giving.models.service_setting import ServiceSetting
from giving.models.recurring_donation import RecurringDonation
from giving.models.payment_transaction import PaymentTransaction
from giving.models.settlement_record import SettlementRecord
from giving.models.system_log import SystemLog

__all__ = [
    "User",
    "Donor",
    "Campaign",
    "ServiceSetting",
    "RecurringDonation",
    "PaymentTransaction",
    "SettlementRecord",
    "SystemLog",
]
