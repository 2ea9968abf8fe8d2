"""
Conversation assembly.

Builds the outbound conversation from the system prompt, the stored
session history and the new user message. Stored history is never mutated.
"""

from typing import Dict, List, Optional, Sequence

from chat_relay.storage.models import MessageRole, SessionMessage


def resolve_system_prompt(override: Optional[str], default: str) -> str:
    """Caller-supplied prompt wins over the configured default unless blank."""
    if override is not None and override.strip():
        return override
    return default


def build_conversation(
    system_prompt: str,
    history: Sequence[SessionMessage],
    message: str
) -> List[Dict[str, str]]:
    """Assemble the messages sent to the completion provider.
    
    Order: one system message, the stored history as-is, the new user message.
    Timestamps are dropped since the provider only takes role and content.
    """
    messages = [{"role": MessageRole.SYSTEM.value, "content": system_prompt}]
    messages.extend(
        {"role": entry.role.value, "content": entry.content}
        for entry in history
    )
    messages.append({"role": MessageRole.USER.value, "content": message})
    return messages
