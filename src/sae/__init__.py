"""
Sensor Alert Engine (sae)

IoT 仪表盘中的传感器健康评估与告警通知核心：
把原始读数与阈值配置归一为健康状态（unknown/ok/warning/alert/offline），
并在冷却期约束下决定何时、向谁发送告警邮件。
"""

from .health.evaluator import evaluate
from .models import Recipient, SensorReading, SensorState, Status, Thresholds

__all__ = [
    "Recipient",
    "SensorReading",
    "SensorState",
    "Status",
    "Thresholds",
    "evaluate",
]
