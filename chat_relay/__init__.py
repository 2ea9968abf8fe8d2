"""
Chat Relay.

Quota-enforcing relay between a web chat client and an LLM completion provider.
"""

__version__ = "0.1.0"
