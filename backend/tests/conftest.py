"""Shared test fixtures for all test modules."""

import contextlib
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cyclepay.models  # noqa: F401
from cyclepay.core import database as db_module
from cyclepay.core.database import Base, get_db
from cyclepay.models.subscription import SubscriptionStatus
from cyclepay.repositories.driver_repository import DriverRepository
from cyclepay.repositories.passenger_repository import PassengerRepository
from cyclepay.repositories.plan_repository import PlanRepository
from cyclepay.repositories.subscription_repository import SubscriptionRepository
from cyclepay.services.payment_gateway import MockPixGateway, reset_payment_gateways


class ScriptedGateway(MockPixGateway):
    """Mock gateway whose transfer outcomes are queued up by the test.

    Queued exceptions are raised, queued results returned; once the queue is
    empty transfers settle like the plain mock.
    """

    def __init__(self):
        super().__init__()
        self.transfer_outcomes = []
        self.query_outcomes = {}
        self.submitted = []

    def send_transfer(self, amount, destination, idempotency_key, description=""):
        self.submitted.append((idempotency_key, amount, destination))
        if self.transfer_outcomes:
            outcome = self.transfer_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return super().send_transfer(amount, destination, idempotency_key, description)

    def query_transfer(self, transfer_id):
        outcome = self.query_outcomes.get(transfer_id)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is not None:
            return outcome
        return super().query_transfer(transfer_id)


# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session
    reset_payment_gateways()


@pytest.fixture
def db_session():
    """Create a database session for direct service testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def gateway():
    """In-memory Pix gateway that records charges, cancellations and transfers."""
    return MockPixGateway()


@pytest.fixture
def scripted_gateway():
    return ScriptedGateway()


@pytest.fixture
def plans(db_session):
    """Seed the plan catalogue: free, essential, and professional with two tiers."""
    repo = PlanRepository(db_session)
    free = repo.create(slug="free", name="Free", price=Decimal("0.00"))
    essential = repo.create(slug="essential", name="Essential", price=Decimal("49.90"))
    professional = repo.create(slug="professional", name="Professional", price=Decimal("99.00"))
    pro_10 = repo.create(
        slug="professional-10",
        name="Professional 10",
        price=Decimal("100.00"),
        parent_id=professional.id,
        quota=10,
    )
    pro_20 = repo.create(
        slug="professional-20",
        name="Professional 20",
        price=Decimal("180.00"),
        parent_id=professional.id,
        quota=20,
    )
    return {
        "free": free,
        "essential": essential,
        "professional": professional,
        "pro_10": pro_10,
        "pro_20": pro_20,
    }


@pytest.fixture
def driver(db_session):
    return DriverRepository(db_session).create(
        name="Ana Souza", tax_id="123.456.789-09", email="ana@example.com"
    )


@pytest.fixture
def make_passenger(db_session, driver):
    """Factory for passengers of the default driver."""
    repo = PassengerRepository(db_session)

    def _make(
        name: str = "Passenger",
        monthly_fee: Decimal = Decimal("150.00"),
        due_day: int | None = 10,
        auto_billing: bool = True,
        **kwargs,
    ):
        return repo.create(
            driver_id=driver.id,
            name=name,
            monthly_fee=monthly_fee,
            due_day=due_day,
            auto_billing=auto_billing,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_subscription(db_session, driver):
    """Factory for subscription rows; price and quota default to the plan's."""
    repo = SubscriptionRepository(db_session)

    def _make(
        plan,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        active: bool = True,
        applied_price: Decimal | None = None,
        contracted_quota: int | None = None,
        cycle_end: date | None = None,
        anchor_date: date | None = None,
        trial_end: date | None = None,
        driver_id=None,
    ):
        return repo.create(
            driver_id=driver_id or driver.id,
            plan_id=plan.id,
            status=status,
            active=active,
            applied_price=applied_price if applied_price is not None else plan.price,
            contracted_quota=contracted_quota if contracted_quota is not None else plan.quota,
            cycle_end=cycle_end,
            anchor_date=anchor_date,
            trial_end=trial_end,
        )

    return _make
