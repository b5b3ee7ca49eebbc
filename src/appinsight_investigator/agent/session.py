import logging
from typing import List

from ..models import Message
from ..services.llm import ChatTransport

logger = logging.getLogger(__name__)

CONTEXT_MARKER = "[Context]:"


class ChatSession:
    """Ordered conversation log, seeded with a system prompt.

    The log is the literal prompt history sent on every turn, so it is only
    ever appended to, apart from :meth:`clear_history` and
    :meth:`update_system_prompt`.
    """

    def __init__(self, transport: ChatTransport, system_prompt: str) -> None:
        self._transport = transport
        self._system_prompt = system_prompt
        self._messages: List[Message] = [Message("system", system_prompt)]

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def history(self) -> List[Message]:
        """Return a copy of the conversation log."""
        return [Message(m.role, m.content) for m in self._messages]

    def __len__(self) -> int:
        return len(self._messages)

    async def send(self, user_text: str) -> str:
        """Append ``user_text``, ask the model with the full log, record and return the reply."""
        self._messages.append(Message("user", user_text))
        reply = await self._transport.complete(self._messages)
        self._messages.append(Message("assistant", reply))
        logger.debug("Turn complete, log has %d message(s)", len(self._messages))
        return reply

    def add_context(self, text: str) -> None:
        self._messages.append(Message("user", f"{CONTEXT_MARKER} {text}"))

    def clear_history(self) -> None:
        self._messages = [Message("system", self._system_prompt)]

    def update_system_prompt(self, text: str) -> None:
        self._system_prompt = text
        self._messages[0].content = text
