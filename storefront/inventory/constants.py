from storefront.config.settings import config_settings
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.inventory")

RESERVATION_TTL_MINUTES = int(config_settings.RESERVATION_TTL_MINUTES)
