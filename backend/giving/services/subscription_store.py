"""定期寄付ストア

- 読み取りは論理削除行を除外する (include_deleted=True で含める)
- add / save はコミットまで行う
- 個別フィールド更新 (update_* / increment_*) はコミットしない。呼び出し側でまとめてコミットする
- claim は他プロセスから見える必要があるため単独でコミットする
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from giving.models.recurring_donation import RecurringDonation
from giving.models.donor import Donor
from giving.models.user import User

MAX_PAGE_SIZE = 100


@dataclass
class Page:
    items: list = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 10

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total_count + self.page_size - 1) // self.page_size


def _base_query(db: Session, include_deleted: bool = False):
    q = db.query(RecurringDonation)
    if not include_deleted:
        q = q.filter(RecurringDonation.is_deleted == False)  # noqa: E712
    return q


def _paginate(query, page: int, page_size: int) -> Page:
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    total = query.count()
    items = (
        query.order_by(RecurringDonation.created_at.desc(), RecurringDonation.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return Page(items=items, total_count=total, page=page, page_size=page_size)


# =========================================================
# 参照
# =========================================================

def get_by_id(db: Session, donation_id: int, include_deleted: bool = False) -> Optional[RecurringDonation]:
    return _base_query(db, include_deleted).filter(RecurringDonation.id == donation_id).first()


def list_by_donor(db: Session, donor_id: int, page: int = 1, page_size: int = 10) -> Page:
    q = _base_query(db).filter(RecurringDonation.donor_id == donor_id)
    return _paginate(q, page, page_size)


def list_by_status(db: Session, status: str, page: int = 1, page_size: int = 10) -> Page:
    q = _base_query(db).filter(RecurringDonation.status == status)
    return _paginate(q, page, page_size)


def list_by_user_email(db: Session, email: str, page: int = 1, page_size: int = 10) -> Page:
    """寄付者のメールアドレスで検索 (donors → users を結合)"""
    q = (
        _base_query(db)
        .join(Donor, RecurringDonation.donor_id == Donor.id)
        .join(User, Donor.user_id == User.id)
        .filter(User.email == email)
    )
    return _paginate(q, page, page_size)


def list_due(db: Session, now: datetime, limit: Optional[int] = None) -> list[RecurringDonation]:
    """
    課金対象の一覧 (next_due_date 昇順)

    条件: active / next_due_date <= now / 終了日未到来 / トークンあり /
          バックオフ期限切れ / 他プロセスの占有リースなし
    (status, next_due_date) の複合インデックスで絞り込める形にしている。
    """
    q = _base_query(db).filter(
        RecurringDonation.status == "active",
        RecurringDonation.next_due_date <= now,
        or_(RecurringDonation.end_date.is_(None), RecurringDonation.end_date > now),
        RecurringDonation.payment_token_enc.isnot(None),
        RecurringDonation.payment_token_enc != "",
        or_(RecurringDonation.retry_not_before.is_(None), RecurringDonation.retry_not_before <= now),
        or_(RecurringDonation.claimed_until.is_(None), RecurringDonation.claimed_until <= now),
    ).order_by(RecurringDonation.next_due_date.asc(), RecurringDonation.id.asc())
    if limit:
        q = q.limit(limit)
    return q.all()


# =========================================================
# 追加・全体更新
# =========================================================

def add(db: Session, donation: RecurringDonation, actor: str, now: datetime) -> RecurringDonation:
    donation.created_by = actor
    donation.created_at = now
    donation.modified_by = actor
    donation.modified_at = now
    db.add(donation)
    db.commit()
    db.refresh(donation)
    return donation


def save(db: Session, donation: RecurringDonation, actor: str, now: datetime) -> RecurringDonation:
    """読み込み済みの集約をまとめて保存"""
    donation.modified_by = actor
    donation.modified_at = now
    db.commit()
    db.refresh(donation)
    return donation


# =========================================================
# 個別フィールド更新 (コミットしない)
# =========================================================

def _targeted_update(db: Session, donation_id: int, values: dict, actor: str, now: datetime, *criteria) -> int:
    values = {
        **values,
        RecurringDonation.modified_by: actor,
        RecurringDonation.modified_at: now,
    }
    return (
        db.query(RecurringDonation)
        .filter(RecurringDonation.id == donation_id, *criteria)
        .update(values, synchronize_session=False)
    )


def _guard(expected_status: Optional[str], claimed_by: Optional[str]) -> list:
    """状態・占有者が変わっていない場合のみ更新する条件"""
    criteria = []
    if expected_status is not None:
        criteria.append(RecurringDonation.status == expected_status)
    if claimed_by is not None:
        criteria.append(RecurringDonation.claimed_by == claimed_by)
    return criteria


def update_next_due_date(
    db: Session,
    donation_id: int,
    next_due_date: datetime,
    actor: str,
    now: datetime,
    expected_due_date: Optional[datetime] = None,
    claimed_by: Optional[str] = None,
) -> bool:
    """
    next_due_date を更新

    expected_due_date 指定時は現在値が一致する場合のみ更新する (compare-and-swap)。
    claimed_by 指定時はその占有者が保持している場合のみ更新する。
    """
    criteria = []
    if expected_due_date is not None:
        criteria.append(RecurringDonation.next_due_date == expected_due_date)
    if claimed_by is not None:
        criteria.append(RecurringDonation.claimed_by == claimed_by)
    updated = _targeted_update(
        db, donation_id, {RecurringDonation.next_due_date: next_due_date}, actor, now, *criteria,
    )
    return updated == 1


def update_status(
    db: Session,
    donation_id: int,
    status: str,
    actor: str,
    now: datetime,
    expected_status: Optional[str] = None,
    claimed_by: Optional[str] = None,
) -> bool:
    criteria = _guard(expected_status, claimed_by)
    updated = _targeted_update(db, donation_id, {RecurringDonation.status: status}, actor, now, *criteria)
    return updated == 1


def increment_successful_count(db: Session, donation_id: int, actor: str, now: datetime) -> bool:
    """成功回数+1、最終処理日時更新、失敗状態をリセット"""
    updated = _targeted_update(
        db,
        donation_id,
        {
            RecurringDonation.successful_charge_count: RecurringDonation.successful_charge_count + 1,
            RecurringDonation.last_processed_date: now,
            RecurringDonation.failed_attempt_count: 0,
            RecurringDonation.retry_not_before: None,
            RecurringDonation.last_error_message: None,
        },
        actor,
        now,
    )
    return updated == 1


def increment_failed_count(
    db: Session,
    donation_id: int,
    error_message: str,
    retry_not_before: Optional[datetime],
    actor: str,
    now: datetime,
    expected_status: Optional[str] = None,
    claimed_by: Optional[str] = None,
) -> bool:
    """失敗回数+1、エラー内容とバックオフ期限を記録 (next_due_date は変更しない)"""
    updated = _targeted_update(
        db,
        donation_id,
        {
            RecurringDonation.failed_attempt_count: RecurringDonation.failed_attempt_count + 1,
            RecurringDonation.last_error_message: (error_message or "")[:2000],
            RecurringDonation.retry_not_before: retry_not_before,
        },
        actor,
        now,
        *_guard(expected_status, claimed_by),
    )
    return updated == 1


def record_error(
    db: Session,
    donation_id: int,
    error_message: str,
    retry_not_before: Optional[datetime],
    actor: str,
    now: datetime,
    claimed_by: Optional[str] = None,
) -> bool:
    """エラー内容とバックオフ期限のみ記録 (失敗回数は変更しない)"""
    updated = _targeted_update(
        db,
        donation_id,
        {
            RecurringDonation.last_error_message: (error_message or "")[:2000],
            RecurringDonation.retry_not_before: retry_not_before,
        },
        actor,
        now,
        *_guard(None, claimed_by),
    )
    return updated == 1


# =========================================================
# 決済占有リース
# =========================================================

def claim(
    db: Session,
    donation_id: int,
    expected_due_date: datetime,
    worker_id: str,
    now: datetime,
    lease: timedelta,
) -> bool:
    """
    決済前に行を占有する (コミットまで行う)

    next_due_date が読み込み時点から変わっておらず、有効な占有者がいない場合のみ成功。
    複数スケジューラが同じ購読を同時に課金しないための唯一の関門。
    """
    updated = (
        db.query(RecurringDonation)
        .filter(
            RecurringDonation.id == donation_id,
            RecurringDonation.status == "active",
            RecurringDonation.is_deleted == False,  # noqa: E712
            RecurringDonation.next_due_date == expected_due_date,
            or_(RecurringDonation.claimed_until.is_(None), RecurringDonation.claimed_until <= now),
        )
        .update(
            {
                RecurringDonation.claimed_by: worker_id,
                RecurringDonation.claimed_until: now + lease,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated == 1


def release_claim(db: Session, donation_id: int, worker_id: str) -> bool:
    """占有を解除 (コミットしない)"""
    updated = (
        db.query(RecurringDonation)
        .filter(RecurringDonation.id == donation_id, RecurringDonation.claimed_by == worker_id)
        .update(
            {RecurringDonation.claimed_by: None, RecurringDonation.claimed_until: None},
            synchronize_session=False,
        )
    )
    return updated == 1


def expire_ended(db: Session, now: datetime, actor: str) -> list[int]:
    """終了日を過ぎた active を expired にする (コミットまで行う)"""
    rows = (
        _base_query(db)
        .with_entities(RecurringDonation.id)
        .filter(
            RecurringDonation.status == "active",
            RecurringDonation.end_date.isnot(None),
            RecurringDonation.end_date <= now,
            or_(RecurringDonation.claimed_until.is_(None), RecurringDonation.claimed_until <= now),
        )
        .all()
    )
    expired = [
        row.id for row in rows
        if update_status(db, row.id, "expired", actor, now, expected_status="active")
    ]
    db.commit()
    return expired
