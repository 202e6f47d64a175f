"""Veriloop streaming events"""

from .models import AgentEvent, EventType, Phase

__all__ = ["AgentEvent", "EventType", "Phase"]
