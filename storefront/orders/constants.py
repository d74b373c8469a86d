from decimal import Decimal
from storefront.config.settings import config_settings
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.orders")

VAT_RATE = Decimal(config_settings.VAT_RATE)

CURRENCY = config_settings.CURRENCY

ORDER_NUMBER_PREFIX = "EST"

# gross prices, vat included
SHIPPING_RATES = {
    "omniva": Decimal("4.99"),
    "omniva_parcel": Decimal("2.99"),
    "dpd": Decimal("5.99"),
    "dpd_pickup": Decimal("3.49"),
}

# method -> (carrier, display name, estimated delivery days)
SHIPPING_METHODS = {
    "omniva": ("omniva", "Omniva Courier", "1-2"),
    "omniva_parcel": ("omniva", "Omniva Parcel Terminal", "2-4"),
    "dpd": ("dpd", "DPD Home Delivery", "1-2"),
    "dpd_pickup": ("dpd", "DPD Pickup Point", "2-3"),
}

CENT = Decimal("0.01")
