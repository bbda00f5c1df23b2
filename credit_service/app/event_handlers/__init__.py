"""이벤트 핸들러 패키지."""

from .subscription_handler import handle_subscription_event, run_subscription_consumer

__all__ = ["handle_subscription_event", "run_subscription_consumer"]
