"""Flow audit logging."""

from voicebank.logging.agent_logger import AgentLogger

__all__ = ["AgentLogger"]
