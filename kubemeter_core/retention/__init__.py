from kubemeter_core.retention.policy import RetentionPass, RetentionPolicy

__all__ = ["RetentionPass", "RetentionPolicy"]
