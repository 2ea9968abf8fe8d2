"""
Core modules for Chat Relay.

This package contains the quota rules, conversation assembly, error
types and the chat orchestrator.
"""
