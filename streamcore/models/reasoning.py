"""
Reasoning multiplexer.

Some vendors stream a "thinking" channel next to the answer. The multiplexer
folds both into one text stream by bracketing reasoning runs with plain-text
delimiters. Nothing is buffered: markers are emitted together with the delta
that triggers them.
"""
from __future__ import annotations

from dataclasses import dataclass

from streamcore.errors import ConfigurationError


@dataclass(frozen=True)
class ReasoningDelimiters:
    opening: str
    closing: str
    line_prefix: str = ""

    def quote(self, text: str) -> str:
        if not self.line_prefix:
            return text
        return text.replace("\n", "\n" + self.line_prefix)


# Markdown callout: every reasoning line renders as a quoted aside
CALLOUT = ReasoningDelimiters(
    opening="\n> [!quote] Reasoning\n> ",
    closing="\n\n",
    line_prefix="> ",
)

THINK_TAGS = ReasoningDelimiters(opening="<think>\n", closing="\n</think>\n\n")

DELIMITER_STYLES: dict[str, ReasoningDelimiters] = {
    "callout": CALLOUT,
    "think_tags": THINK_TAGS,
}


def get_delimiters(style: str) -> ReasoningDelimiters:
    try:
        return DELIMITER_STYLES[style]
    except KeyError:
        known = ", ".join(sorted(DELIMITER_STYLES))
        raise ConfigurationError(f"Unknown reasoning style '{style}' (known: {known})") from None


class ReasoningMultiplexer:
    def __init__(self, delimiters: ReasoningDelimiters = CALLOUT):
        self.delimiters = delimiters
        self.inside_reasoning_block = False

    def reasoning(self, text: str) -> str:
        prefix = ""
        if not self.inside_reasoning_block:
            self.inside_reasoning_block = True
            prefix = self.delimiters.opening
        return prefix + self.delimiters.quote(text)

    def content(self, text: str) -> str:
        if self.inside_reasoning_block:
            self.inside_reasoning_block = False
            return self.delimiters.closing + text
        return text

    def close(self) -> str:
        """Closing marker owed at end of stream, or an empty string."""
        if self.inside_reasoning_block:
            self.inside_reasoning_block = False
            return self.delimiters.closing
        return ""
