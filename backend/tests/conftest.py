"""テスト共通フィクスチャ

giving の import 前に環境変数を設定する (settings は import 時に確定するため)。
DB はテストごとにファイル SQLite を作成し、複数セッションからの同時アクセスも検証できるようにする。
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AES_KEY", "0123456789abcdef" * 4)
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_TOKEN", "test-scheduler-token")
os.environ.setdefault("DEBUG", "false")

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from giving.core.database import Base
import giving.models  # noqa: F401
from giving.models.user import User
from giving.models.donor import Donor
from giving.models.campaign import Campaign
from giving.services import mail_service
from giving.services.stripe_service import ChargeResult


class FakeGateway:
    """
    決済ゲートウェイのスタブ

    同じ reference の再送には同じ結果を返す (Stripe の冪等キーと同じ振る舞い)。
    """

    def __init__(self, succeed=True, error_message="Card declined", raise_for_tokens=()):
        self.succeed = succeed
        self.error_message = error_message
        self.raise_for_tokens = set(raise_for_tokens)
        self.calls = []
        self._results = {}

    @property
    def charged_references(self):
        return [c["reference"] for c in self.calls]

    def charge(self, amount, currency, token, reference, description, customer_email=None):
        self.calls.append({
            "amount": amount,
            "currency": currency,
            "token": token,
            "reference": reference,
            "description": description,
            "customer_email": customer_email,
        })
        if token in self.raise_for_tokens:
            raise RuntimeError(f"gateway exploded for {token}")
        if reference in self._results:
            return self._results[reference]
        if self.succeed:
            result = ChargeResult(success=True, transaction_id=f"pi_{len(self._results) + 1:04d}")
        else:
            result = ChargeResult(success=False, error_message=self.error_message)
        self._results[reference] = result
        return result


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'giving_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def sent_mails(monkeypatch):
    """メール送信を記録のみにする"""
    sent = []

    def fake_send(to_email, subject, template_name, **context):
        sent.append({"to": to_email, "subject": subject, "template": template_name, **context})
        return True

    monkeypatch.setattr(mail_service, "_send", fake_send)
    return sent


def make_donor(db, email="donor@example.com", first_name="Alex", last_name="Rivera") -> Donor:
    user = User(email=email, first_name=first_name, last_name=last_name, is_active=True)
    db.add(user)
    db.flush()
    donor = Donor(user_id=user.id)
    db.add(donor)
    db.commit()
    db.refresh(donor)
    return donor


@pytest.fixture
def donor(db):
    return make_donor(db)


@pytest.fixture
def campaign(db):
    c = Campaign(code="WINTER24", title="Winter Relief", is_active=True)
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def create_donation(db, donor):
    """既定値で定期寄付を作成するヘルパー"""
    from giving.services import recurring_donation_service

    def _create(**overrides):
        params = {
            "donor_id": donor.id,
            "amount": Decimal("25.00"),
            "frequency": "monthly",
            "start_date": datetime(2024, 1, 1),
            "end_date": None,
            "payment_token": "tok_ok",
            "created_by": "tester",
            "now": datetime(2023, 12, 15),
        }
        params.update(overrides)
        return recurring_donation_service.create_subscription(db, **params)

    return _create
