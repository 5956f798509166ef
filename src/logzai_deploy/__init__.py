"""Deployment lifecycle tooling for self-hosted LogzAI stacks.

Installs the compose stack, updates individual services with minimal
downtime, waits for readiness, and provisions HTTPS certificates.
"""

__version__ = "1.0.0"
