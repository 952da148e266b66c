"""
Streaming removal of control tokens.

Generated text arrives in token-sized fragments whose boundaries do not line
up with control-token boundaries. StreamFilter holds back only the longest
buffered suffix that could still grow into a control token and releases
everything before it.
"""

from typing import Iterable, List, Optional, Tuple


class StreamFilter:
    """Removes control-token strings from a fragmented text stream.

    The concatenation of everything returned by feed() and flush() equals the
    full input text with every control token removed, independent of how the
    input was split. Removal is a single left-to-right pass: text on either
    side of a removed token is not rescanned for a token it forms once joined.

    Example:
        >>> f = StreamFilter(["<|eot_id|>"])
        >>> f.feed("Hi<|eo") + f.feed("t_id|>!") + f.flush()
        'Hi!'
    """

    def __init__(self, control_tokens: Iterable[str]) -> None:
        self.control_tokens: Tuple[str, ...] = tuple(
            sorted({t for t in control_tokens if t}, key=len, reverse=True)
        )
        self._prefixes = frozenset(
            token[:i] for token in self.control_tokens for i in range(1, len(token))
        )
        self._max_pending = max((len(t) - 1 for t in self.control_tokens), default=0)
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Text held back because it may start a control token."""
        return self._buffer

    def feed(self, fragment: str) -> str:
        """Add a fragment and return the text that is safe to emit."""
        if not fragment:
            return ""
        self._buffer += fragment

        out: List[str] = []
        while True:
            match = self._find_control_token(self._buffer)
            if match is None:
                break
            start, token = match
            out.append(self._buffer[:start])
            self._buffer = self._buffer[start + len(token):]

        keep = self._pending_suffix_length(self._buffer)
        cut = len(self._buffer) - keep
        out.append(self._buffer[:cut])
        self._buffer = self._buffer[cut:]

        return "".join(out)

    def flush(self) -> str:
        """End of stream: return the held-back text unless it is a control token."""
        remainder, self._buffer = self._buffer, ""
        if remainder in self.control_tokens:
            return ""
        return remainder

    def reset(self) -> None:
        self._buffer = ""

    def _find_control_token(self, text: str) -> Optional[Tuple[int, str]]:
        # Earliest occurrence wins; at equal positions the longest token wins
        best: Optional[Tuple[int, str]] = None
        for token in self.control_tokens:
            idx = text.find(token)
            if idx != -1 and (best is None or idx < best[0]):
                best = (idx, token)
        return best

    def _pending_suffix_length(self, text: str) -> int:
        for length in range(min(self._max_pending, len(text)), 0, -1):
            if text[-length:] in self._prefixes:
                return length
        return 0
