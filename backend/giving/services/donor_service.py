"""寄付者参照 (ID管理サービスの読み取り専用窓口)"""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy.orm import Session

from giving.models.donor import Donor
from giving.models.user import User


@dataclass
class DonorContact:
    donor_id: int
    email: str
    name: str


def get_donor_by_email(db: Session, email: str) -> Optional[Donor]:
    """メールアドレス → 寄付者 (有効なユーザーのみ)"""
    if not email:
        return None
    return (
        db.query(Donor)
        .join(User, Donor.user_id == User.id)
        .filter(User.email == email.strip(), User.is_active == True)  # noqa: E712
        .first()
    )


def get_contact(db: Session, donor_id: int) -> Optional[DonorContact]:
    """決済メタデータ・通知用の連絡先"""
    row = (
        db.query(Donor, User)
        .join(User, Donor.user_id == User.id)
        .filter(Donor.id == donor_id)
        .first()
    )
    if not row:
        return None
    donor, user = row
    return DonorContact(donor_id=donor.id, email=user.email, name=user.full_name)


def is_owner(db: Session, donor_id: int, email: str) -> bool:
    """email のユーザーが donor_id の寄付者本人か"""
    contact = get_contact(db, donor_id)
    if not contact or not email:
        return False
    return contact.email.lower() == email.strip().lower()
