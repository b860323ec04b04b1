import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

os.environ.setdefault("SPENDWISE_DATA_DIR", tempfile.mkdtemp(prefix="spendwise-tests-"))
os.environ.setdefault("SPENDWISE_SCHEDULER_ENABLED", "0")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from database import Base  # noqa: E402
from gemini_client import AIServiceError  # noqa: E402
from models import Transaction, TransactionType, User  # noqa: E402
from ocr import OcrResult  # noqa: E402


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def make_user(session: Session, user_id: int = 1, **flags) -> User:
    user = User(
        id=user_id,
        name=f"User {user_id}",
        email=f"user{user_id}@example.com",
        notifications_enabled=flags.get("enabled", True),
        budget_alerts_enabled=flags.get("budget_alerts", True),
    )
    session.add(user)
    session.commit()
    return user


def add_txn(
    session: Session,
    amount: float,
    when: datetime,
    *,
    user_id: int = 1,
    category: str = "Food",
    is_deleted: bool = False,
) -> Transaction:
    txn = Transaction(
        user_id=user_id,
        type=TransactionType.expense if amount < 0 else TransactionType.income,
        category=category,
        amount=amount,
        currency="INR",
        date=when,
        tags=[],
        extra={},
        is_deleted=is_deleted,
    )
    session.add(txn)
    session.commit()
    return txn


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.threshold: list[tuple] = []
        self.exceeded: list[tuple] = []

    def send_threshold_alert(self, *args):
        if self.fail:
            raise RuntimeError("smtp down")
        self.threshold.append(args)

    def send_exceeded_alert(self, *args):
        if self.fail:
            raise RuntimeError("smtp down")
        self.exceeded.append(args)


class FakeOcr:
    def __init__(self, *results: OcrResult) -> None:
        self.results = list(results)
        self.calls: list[Path] = []

    def recognize(self, image_path: Path) -> OcrResult:
        self.calls.append(Path(image_path))
        return self.results.pop(0)


class FakeAI:
    """Replays canned responses; exceptions in the script are raised."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []

    def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.responses:
            raise AssertionError("unexpected AI call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def overloaded() -> AIServiceError:
    return AIServiceError("model overloaded", status=503)
