"""Guest agent: TCP JSON gesture protocol, server, client and injection backends."""

from apk_splicer.agent.client import AgentClient, AgentClientError
from apk_splicer.agent.injection import Gesture, InjectionBackend, ShellInputBackend, Stroke
from apk_splicer.agent.server import GuestAgentServer

__all__ = [
    "AgentClient",
    "AgentClientError",
    "Gesture",
    "GuestAgentServer",
    "InjectionBackend",
    "ShellInputBackend",
    "Stroke",
]
