"""
Chat orchestration.

Sequences a chat request through the relay core:

1. Input validation - rejected requests never touch the store
2. User creation and daily rollover
3. Quota consumption - refused requests never reach the provider
4. Conversation assembly from the system prompt and stored history
5. Completion call, bounded by the provider's timeout
6. Session update - user message first, assistant reply second

Quota is charged before the provider is called and is not refunded when
the call fails. Nothing is retried at this layer.
"""

import hmac
from dataclasses import dataclass
from typing import List, Optional

from chat_relay.config.loader import RelayConfig
from chat_relay.config.settings import Settings
from chat_relay.log import get_logger
from chat_relay.sdk.openai_client import CompletionProvider, OpenAICompletionClient
from chat_relay.storage.models import MessageRole, SessionMessage, UserRecord
from chat_relay.storage.repository import (
    SessionRepository,
    UserRepository,
    initialize_schema,
)

from .context import build_conversation, resolve_system_prompt
from .errors import Forbidden, InvalidRequest, QuotaExceeded
from .quota import Clock, utc_today

logger = get_logger(__name__)

DEFAULT_USER_ID = "guest"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 300
MAX_TEMPERATURE = 2.0


@dataclass(frozen=True)
class ChatRequest:
    """An incoming chat message with its sampling parameters."""
    message: Optional[str]
    user_id: str = DEFAULT_USER_ID
    system: Optional[str] = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS


@dataclass(frozen=True)
class ChatReply:
    """Generated reply and the quota left after this request.

    ``remaining`` is None for users on an unbounded level.
    """
    reply: str
    remaining: Optional[int]
    user_id: str
    model: str


def _require_user_id(user_id) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidRequest("userId is required")
    return user_id


def validate_chat_request(request: ChatRequest) -> None:
    """Reject malformed requests before any state is touched.

    Raises:
        InvalidRequest: If any field is missing or out of range
    """
    if not isinstance(request.message, str) or not request.message.strip():
        raise InvalidRequest("message is required")
    _require_user_id(request.user_id)

    temperature = request.temperature
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise InvalidRequest("temperature must be a number")
    if not 0 <= temperature <= MAX_TEMPERATURE:
        raise InvalidRequest(f"temperature must be between 0 and {MAX_TEMPERATURE}")

    max_tokens = request.max_tokens
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens <= 0:
        raise InvalidRequest("max_tokens must be a positive integer")


class ChatOrchestrator:
    """Entry point for every relay operation.

    Holds no state of its own between requests; the repositories are the
    single source of truth.
    """

    def __init__(
        self,
        users: UserRepository,
        sessions: SessionRepository,
        provider: CompletionProvider,
        system_prompt: str,
        admin_key: Optional[str] = None
    ):
        self.users = users
        self.sessions = sessions
        self.provider = provider
        self.system_prompt = system_prompt
        self.admin_key = admin_key

    def submit(self, request: ChatRequest) -> ChatReply:
        """Run one chat request through quota, context and completion.

        Args:
            request: Incoming chat request

        Returns:
            ChatReply with the generated text and remaining quota

        Raises:
            InvalidRequest: If the request is malformed
            QuotaExceeded: If the user has no allowance or bonus left
            UpstreamFailure: If the completion provider fails
        """
        validate_chat_request(request)
        user_id = request.user_id

        self.users.ensure_user(user_id)
        decision = self.users.consume_quota(user_id)
        if not decision.allowed:
            raise QuotaExceeded(decision.reason, remaining=0)

        system_prompt = resolve_system_prompt(request.system, self.system_prompt)
        history = self.sessions.read(user_id)
        conversation = build_conversation(system_prompt, history, request.message)

        logger.info(
            "completion_requested",
            user_id=user_id,
            model=decision.model,
            history_messages=len(history)
        )
        reply = self.provider.complete(
            conversation,
            model=decision.model,
            temperature=float(request.temperature),
            max_tokens=request.max_tokens
        )

        # A crash in between leaves the user message without a reply, never the reverse
        self.sessions.append(user_id, MessageRole.USER, request.message)
        self.sessions.append(user_id, MessageRole.ASSISTANT, reply)

        return ChatReply(
            reply=reply,
            remaining=decision.remaining,
            user_id=user_id,
            model=decision.model
        )

    def history(self, user_id: str) -> List[SessionMessage]:
        """Get the stored conversation log of a user."""
        return self.sessions.read(_require_user_id(user_id))

    def update_entitlement(
        self,
        user_id: str,
        level: Optional[str] = None,
        bonus_requests: Optional[int] = None
    ) -> UserRecord:
        """Apply a level and/or bonus change issued by the membership system."""
        return self.users.update_level(
            _require_user_id(user_id),
            level=level,
            bonus_requests=bonus_requests
        )

    def bulk_reset(self, admin_key: Optional[str]) -> int:
        """Reset every user's daily usage.

        Args:
            admin_key: Credential presented by the caller

        Returns:
            Number of users reset

        Raises:
            Forbidden: If no admin key is configured or the credential does not match
        """
        if not self.admin_key or not admin_key or not hmac.compare_digest(
            admin_key.encode("utf-8"), self.admin_key.encode("utf-8")
        ):
            logger.warning("admin_forbidden", operation="bulk_reset")
            raise Forbidden("forbidden")
        return self.users.bulk_reset_usage()


def create_orchestrator(
    settings: Settings,
    config: RelayConfig,
    provider: Optional[CompletionProvider] = None,
    clock: Clock = utc_today
) -> ChatOrchestrator:
    """Wire repositories and the completion provider from settings.

    Initializes the database schema if needed.

    Raises:
        ValueError: If no provider is given and OPENAI_API_KEY is not set
    """
    if provider is None:
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is not set")
        provider = OpenAICompletionClient(
            api_key=settings.openai_api_key,
            timeout=settings.upstream_timeout,
            base_url=settings.openai_base_url
        )

    initialize_schema(settings.db_path)
    return ChatOrchestrator(
        users=UserRepository(config.levels, settings.db_path, clock=clock),
        sessions=SessionRepository(settings.db_path, max_messages=config.max_session_messages),
        provider=provider,
        system_prompt=config.system_prompt,
        admin_key=settings.admin_key
    )
