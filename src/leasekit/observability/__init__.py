from .metrics import LockMetrics, default_metrics

__all__ = ["LockMetrics", "default_metrics"]
