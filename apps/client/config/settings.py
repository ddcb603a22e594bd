"""
Settings for the Ranbow checkout client.

Values come from the environment (optionally a .env file next to the repo
root). Gateway secrets are never hardcoded; missing card or wallet credentials
surface as PaymentConfigError when that gateway is used.
"""

from decimal import Decimal
from pathlib import Path

import environ  # type: ignore[import-untyped]

BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent

env = environ.Env(
    DEBUG=(bool, False),
)

environ.Env.read_env(BASE_DIR / ".env")

DEBUG = env("DEBUG")

# =============================================================================
# Backend order/payment API
# =============================================================================

ORDER_API_BASE_URL = env("ORDER_API_BASE_URL", default="http://localhost:8081/api")
ORDER_API_TIMEOUT_SECONDS = env.float("ORDER_API_TIMEOUT_SECONDS", default=10.0)
ORDER_API_MAX_RETRIES = env.int("ORDER_API_MAX_RETRIES", default=3)
ORDER_API_RETRY_BACKOFF_BASE = env.float("ORDER_API_RETRY_BACKOFF_BASE", default=0.5)

# Window used to derive the order idempotency key from cart contents
IDEMPOTENCY_WINDOW_SECONDS = env.int("IDEMPOTENCY_WINDOW_SECONDS", default=300)

# =============================================================================
# Money
# =============================================================================

CURRENCY = env("CURRENCY", default="TWD")
TAX_RATE = Decimal("0.05")
SERVICE_CHARGE_RATE = Decimal("0.10")

# =============================================================================
# Payment gateways
# =============================================================================

GATEWAY_TIMEOUT_SECONDS = env.float("GATEWAY_TIMEOUT_SECONDS", default=30.0)

# Card (ECPay all-in-one checkout)
CARD_CHECKOUT_URL = env(
    "CARD_CHECKOUT_URL",
    default="https://payment-stage.ecpay.com.tw/Cashier/AioCheckOut/V5",
)
CARD_MERCHANT_ID = env("CARD_MERCHANT_ID", default="")
CARD_HASH_KEY = env("CARD_HASH_KEY", default="")
CARD_HASH_IV = env("CARD_HASH_IV", default="")
CARD_RETURN_URL = env(
    "CARD_RETURN_URL", default="http://localhost:3000/payment/return"
)
CARD_CLIENT_BACK_URL = env(
    "CARD_CLIENT_BACK_URL", default="http://localhost:3000/orders"
)

# Two-phase wallet (LINE Pay v3)
WALLET_API_BASE_URL = env(
    "WALLET_API_BASE_URL", default="https://sandbox-api-pay.line.me"
)
WALLET_CHANNEL_ID = env("WALLET_CHANNEL_ID", default="")
WALLET_CHANNEL_SECRET = env("WALLET_CHANNEL_SECRET", default="")
WALLET_CONFIRM_URL = env(
    "WALLET_CONFIRM_URL", default="http://localhost:3000/payment/linepay/confirm"
)
WALLET_CANCEL_URL = env(
    "WALLET_CANCEL_URL", default="http://localhost:3000/payment/linepay/cancel"
)

# Device-attested wallet (Apple Pay)
DEVICE_WALLET_MERCHANT_ID = env(
    "DEVICE_WALLET_MERCHANT_ID", default="merchant.com.ranbow.restaurant"
)
DEVICE_WALLET_DISPLAY_NAME = env(
    "DEVICE_WALLET_DISPLAY_NAME", default="Ranbow Restaurant"
)
DEVICE_WALLET_COUNTRY_CODE = env("DEVICE_WALLET_COUNTRY_CODE", default="TW")
DEVICE_WALLET_PROCESSOR_URL = env(
    "DEVICE_WALLET_PROCESSOR_URL",
    default="http://localhost:8081/api/payments/apple-pay",
)

# =============================================================================
# Sync polling
# =============================================================================

CUSTOMER_POLL_INTERVAL_SECONDS = env.float(
    "CUSTOMER_POLL_INTERVAL_SECONDS", default=30.0
)
STAFF_POLL_INTERVAL_SECONDS = env.float("STAFF_POLL_INTERVAL_SECONDS", default=30.0)

# =============================================================================
# Client-side session state
# =============================================================================

SESSION_STORE_DIR = Path(
    env("SESSION_STORE_DIR", default=str(BASE_DIR / ".sessions"))
)
