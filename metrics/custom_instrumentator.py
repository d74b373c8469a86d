
from prometheus_fastapi_instrumentator import Instrumentator,metrics

instrumentator = Instrumentator(
    should_ignore_untemplated=True,      # /orders/EST-... → /orders/{order_ref}
    excluded_handlers=["/metrics", "/api/v1/health"],
    should_instrument_requests_inprogress=True,
    inprogress_name="storefront_http_requests_inprogress",
    inprogress_labels=True,
    should_group_status_codes=False,
)

instrumentator.add(
    metrics.default(
        metric_namespace="storefront",
        latency_lowr_buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
    )
)
