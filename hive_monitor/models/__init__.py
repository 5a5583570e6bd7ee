# Database models
from hive_monitor.models.device import Device
from hive_monitor.models.operator import Operator
from hive_monitor.models.policy import ThresholdPolicy
from hive_monitor.models.reading import Reading

__all__ = ["Device", "Operator", "Reading", "ThresholdPolicy"]
