from services.concierge.agent.orchestrator import AgentOrchestrator, AgentRequest, AgentResult

__all__ = ["AgentOrchestrator", "AgentRequest", "AgentResult"]
