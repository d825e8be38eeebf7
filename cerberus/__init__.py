"""
Cerberus - an EventStoreDB / KurrentDB administration tool.

Components:
- log: connections to the event log (KurrentDB, in-memory)
- replication: copy events between two log instances
- tools: command line entry points (export, check, list)

Configuration comes from environment variables (see config.py),
overridden by command-line flags.
"""

__version__ = "0.1.0"
