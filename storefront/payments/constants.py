from prometheus_client import Counter
from storefront.common.logging_setup import get_logger

logger = get_logger("storefront.payments")


PAYMENT_SIGNATURE_HEADER = "X-Payment-Signature"
MONTONIO_SIGNATURE_HEADER = "x-montonio-signature"
STRIPE_SIGNATURE_HEADER = "Stripe-Signature"

# review reasons written on orders that need manual reconciliation
REVIEW_PAYMENT_AFTER_CANCEL = "payment_after_cancel"
REVIEW_LATE_PAYMENT_OUT_OF_STOCK = "late_payment_out_of_stock"
REVIEW_PAYMENT_WITHOUT_HOLDS = "payment_without_reservation"

WEBHOOK_EVENTS = Counter(
    "storefront_payment_webhooks_total",
    "Payment webhook deliveries by provider and outcome",
    ["provider", "outcome"],
)
