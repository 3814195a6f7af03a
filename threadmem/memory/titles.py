"""Thread title generation from the first user message."""

import logging

import anthropic

from threadmem.config import settings

logger = logging.getLogger(__name__)

MAX_TITLE_CHARS = 60

_TITLE_SYSTEM = (
    "Write a short title (at most six words) for a conversation that starts "
    "with the user's message. Reply with the title only, no quotes or punctuation "
    "at the end."
)


def fallback_title(text: str, max_chars: int = MAX_TITLE_CHARS) -> str:
    """First non-empty line of *text*, cut at a word boundary."""
    line = next((ln.strip() for ln in text.splitlines() if ln.strip()), "")
    if not line:
        return "New conversation"
    if len(line) <= max_chars:
        return line
    cut = line[:max_chars].rsplit(" ", 1)[0].rstrip(",.;:-")
    return f"{cut or line[:max_chars]}…"


class TitleGenerator:
    """Asks Claude for a thread title; falls back to the message text.

    Without an Anthropic API key no request is made.
    """

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.anthropic_api_key
        self.model = model or settings.title_model
        self._client: anthropic.AsyncAnthropic | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(api_key=self._api_key)
        return self._client

    async def generate(self, first_message: str) -> str:
        if not self.enabled or not first_message.strip():
            return fallback_title(first_message)

        try:
            response = await self._get_client().messages.create(
                model=self.model,
                max_tokens=32,
                system=_TITLE_SYSTEM,
                messages=[{"role": "user", "content": first_message[:2000]}],
            )
            title = response.content[0].text.strip().strip('"').strip()
        except anthropic.APIError:
            logger.exception("Title generation failed, using message text")
            return fallback_title(first_message)

        return fallback_title(title) if title else fallback_title(first_message)
