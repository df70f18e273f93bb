import sys
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from tripdesk_api.api.dependencies.services import get_gateway_client, get_notification_service  # noqa: E402
from tripdesk_api.app import create_app  # noqa: E402
from tripdesk_api.core.settings import settings  # noqa: E402
from tripdesk_api.db.base import Base  # noqa: E402
from tripdesk_api.db.session import get_session  # noqa: E402
from tripdesk_api.models.checkout_session import CheckoutSession, CheckoutSessionStatusEnum  # noqa: E402
from tripdesk_api.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionTypeEnum  # noqa: E402
from tripdesk_api.models.order import Order, OrderItem, OrderStatusEnum  # noqa: E402
from tripdesk_api.models.payment import Payment, PaymentProviderEnum, PaymentStatusEnum  # noqa: E402
from tripdesk_api.models.trip import Trip  # noqa: E402
from tripdesk_api.models.user import User  # noqa: E402
from tripdesk_api.observability.payments import get_payment_store  # noqa: E402
from tripdesk_api.services.notifications import InMemoryEmailBackend, NotificationService  # noqa: E402
from tripdesk_api.services.payments import GatewayClient, WebhookNotification  # noqa: E402


ORDER_NUMBER = "DTS-2026-000123"
GATEWAY_SESSION_ID = f"{ORDER_NUMBER}-a1b2c3d4"
GATEWAY_ORDER_ID = "987654321"


@dataclass
class SeededOrder:
    order_id: UUID
    order_number: str
    trip_id: UUID
    user_id: UUID | None
    account_id: UUID | None
    checkout_session_id: UUID | None
    payment_id: UUID | None


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    monkeypatch.setattr(settings, "admin_api_key", "")
    monkeypatch.setattr(settings, "gateway_webhook_allowed_ips", [])
    monkeypatch.setattr(settings, "loyalty_earn_divisor", 1000)
    monkeypatch.setattr(settings, "loyalty_points_validity_days", 365)
    get_payment_store().reset()
    yield
    get_payment_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture
def gateway_client() -> GatewayClient:
    return GatewayClient(
        merchant_id=11111,
        pos_id=11111,
        api_key="test-api-key-0123456789abcdef",
        crc_key="test-crc-key",
        api_url="https://gateway.test",
    )


@pytest.fixture
def email_backend() -> InMemoryEmailBackend:
    return InMemoryEmailBackend()


@pytest.fixture
def notifications(email_backend) -> NotificationService:
    return NotificationService(backend=email_backend)


@pytest_asyncio.fixture
async def app_with_db(session_factory, gateway_client, notifications):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_notification_service] = lambda: notifications

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


def sign_notification(
    gateway: GatewayClient,
    *,
    amount: int,
    session_id: str = GATEWAY_SESSION_ID,
    gateway_order_id: str = GATEWAY_ORDER_ID,
    currency: str = "PLN",
    valid: bool = True,
) -> WebhookNotification:
    payload = {
        "merchantId": str(gateway.merchant_id),
        "posId": str(gateway.pos_id),
        "sessionId": session_id,
        "amount": str(amount),
        "currency": currency,
        "orderId": gateway_order_id,
    }
    unsigned = WebhookNotification(
        merchant_id=payload["merchantId"],
        pos_id=payload["posId"],
        session_id=session_id,
        amount=amount,
        currency=currency,
        gateway_order_id=gateway_order_id,
        signature="",
        payload=payload,
    )
    signature = gateway.signature_candidates(unsigned)["pipe_session_order"] if valid else "0" * 96
    return replace(unsigned, signature=signature, payload={**payload, "sign": signature})


@pytest.fixture
def seed_order(session_factory):
    async def _seed(
        *,
        order_number: str = ORDER_NUMBER,
        status: OrderStatusEnum = OrderStatusEnum.SUBMITTED,
        total_cents: int = 50000,
        points_reserved: int = 200,
        starting_points: int = 500,
        seats_booked: int = 2,
        trip_capacity: int = 10,
        with_user: bool = True,
        payment_provider: PaymentProviderEnum | None = PaymentProviderEnum.EXTERNAL_GATEWAY,
        payment_status: PaymentStatusEnum = PaymentStatusEnum.PENDING,
        submitted_at: datetime | None = None,
        session_expires_at: datetime | None = None,
        session_status: CheckoutSessionStatusEnum = CheckoutSessionStatusEnum.PENDING,
    ) -> SeededOrder:
        now = datetime.now(timezone.utc)
        async with session_factory() as session:
            trip = Trip(
                slug=f"tatra-{order_number.lower()}",
                title="Tatra ski week",
                capacity=trip_capacity,
                seats_left=trip_capacity - seats_booked,
            )
            session.add(trip)

            user = None
            account = None
            if with_user:
                user = User(email=f"{order_number.lower()}@example.com", display_name="Ola")
                session.add(user)
                await session.flush()
                account = LoyaltyAccount(user_id=user.id, points_balance=starting_points)
                session.add(account)
                await session.flush()
                if starting_points:
                    session.add(
                        LoyaltyTransaction(
                            account_id=account.id,
                            type=LoyaltyTransactionTypeEnum.EARN,
                            points=starting_points,
                            note="Opening balance",
                            created_at=now - timedelta(days=30),
                            expires_at=now + timedelta(days=335),
                        )
                    )

            checkout = CheckoutSession(
                status=session_status,
                customer_email="ola@example.com",
                user_id=user.id if user else None,
                cart_data={"items": [{"slug": trip.slug, "qty": seats_booked}]},
                points_reserved=points_reserved,
                expires_at=session_expires_at or now + timedelta(hours=1),
            )
            session.add(checkout)
            await session.flush()

            started = submitted_at or now
            order = Order(
                order_number=order_number,
                status=status,
                customer_email="ola@example.com",
                customer_name="Ola Nowak",
                user_id=user.id if user else None,
                checkout_session_id=checkout.id,
                currency="PLN",
                total_cents=total_cents,
                submitted_at=started if status != OrderStatusEnum.DRAFT else None,
                created_at=started,
            )
            order.items.append(OrderItem(trip_id=trip.id, qty=seats_booked, unit_price_cents=total_cents // seats_booked))
            session.add(order)
            await session.flush()

            payment = None
            if payment_provider is not None:
                payment = Payment(
                    order_id=order.id,
                    provider=payment_provider,
                    status=payment_status,
                    amount_cents=total_cents,
                    currency="PLN",
                    external_id="tok-initial" if payment_provider == PaymentProviderEnum.EXTERNAL_GATEWAY else None,
                    raw={"_meta": {"gatewaySessionId": GATEWAY_SESSION_ID, "orderNumber": order_number}},
                    paid_at=now if payment_status == PaymentStatusEnum.PAID else None,
                    created_at=started,
                )
                session.add(payment)

            await session.commit()
            return SeededOrder(
                order_id=order.id,
                order_number=order.order_number,
                trip_id=trip.id,
                user_id=user.id if user else None,
                account_id=account.id if account else None,
                checkout_session_id=checkout.id,
                payment_id=payment.id if payment else None,
            )

    return _seed


@pytest.fixture
def signed_notification(gateway_client):
    def _build(**kwargs) -> WebhookNotification:
        return sign_notification(gateway_client, **kwargs)

    return _build
