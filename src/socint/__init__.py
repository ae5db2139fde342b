"""
SOC-Inteligente SOAR - Playbook Execution Engine

This package runs declarative response playbooks against alerts and incidents:
it walks the playbook step graph, evaluates branch conditions, fans out
parallel sub-graphs and calls external security systems (EDR, firewall,
identity, notification, enrichment) over HTTP, producing an auditable
execution record for every run.

Main modules:
- soar: playbook models, graph walker, step handlers and execution lifecycle
- config: environment-driven settings
- ui: HTTP API for manual playbook runs
- cli: socctl operational CLI
"""

__version__ = "0.3.0"
__author__ = "SOC-Inteligente Team"

__all__ = ["__version__", "__author__"]
