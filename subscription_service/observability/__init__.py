from subscription_service.observability.metrics import MetricsManager, metrics

__all__ = ["MetricsManager", "metrics"]
