"""Payment gateway integration and reconciliation services."""

from .audit import merge_raw  # noqa: F401
from .gateway import (  # noqa: F401
    GatewayClient,
    RegistrationRequest,
    RegistrationResult,
    VerificationRequest,
    VerificationResult,
    build_gateway_client,
)
from .initiation import InitiationResult, PaymentInitiationService  # noqa: F401
from .reconciliation import PaymentReconciliationService, ReconciliationResult  # noqa: F401
from .webhook import WebhookNotification, normalize_webhook_payload, order_number_from_session  # noqa: F401
