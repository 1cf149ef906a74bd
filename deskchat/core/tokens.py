"""Token counting utilities for managing the context window budget."""

import tiktoken


class TokenCounter:
    """Counts tokens in text using tiktoken."""

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        """
        Args:
            encoding_name: tiktoken encoding. The encoding is loaded on first
                           use since loading it may download the BPE ranks.
        """
        self.encoding_name = encoding_name
        self._encoding: tiktoken.Encoding | None = None

    @property
    def encoding(self) -> tiktoken.Encoding:
        if self._encoding is None:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return self._encoding

    def count_tokens(self, text: str) -> int:
        """Count tokens in a text string."""
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def count_message_tokens(self, message: dict[str, str]) -> int:
        """Count tokens in a chat message, with a small formatting overhead."""
        return self.count_tokens(message.get("content", "")) + 4

    def count_messages_tokens(self, messages: list[dict[str, str]]) -> int:
        return sum(self.count_message_tokens(m) for m in messages)
