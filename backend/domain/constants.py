"""
Domain constants used across services/routers.
"""
from datetime import timedelta

from domain.enums import ServiceTier

# Server-side price table (IDR). Client-supplied prices are never used.
SERVICE_PRICES = {
    ServiceTier.PORTFOLIO: 100_000,
    ServiceTier.LANDING: 250_000,
    ServiceTier.CUSTOM: 400_000,
}

# An order is payable for this long after creation
ORDER_EXPIRY_WINDOW = timedelta(minutes=15)

ORDER_ID_PREFIX = "ORDER-"

# Midtrans action carrying the QR image URL
QR_ACTION_NAME = "generate-qr-code"
