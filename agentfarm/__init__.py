"""agentfarm: resilient step execution for AI-agent workflows."""

__version__ = "0.1.0"
