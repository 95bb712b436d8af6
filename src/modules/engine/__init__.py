"""
Engine boundary module.

``EngineGateway`` exposes the progression and quest operations as
``OperationResult``-returning coroutines.
"""

from src.modules.engine.gateway import ALERT_EVENT, EngineGateway, OperationResult

__all__ = ["ALERT_EVENT", "EngineGateway", "OperationResult"]
