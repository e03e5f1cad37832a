"""
Sentence-aware text chunking.

Splits long documents into overlapping windows sized for the embedding
model's token budget. Each cut prefers the right-most sentence boundary
near the window edge so sentences are not severed mid-thought, and
neighbouring chunks share ``overlap`` characters of context.
"""

DEFAULT_MAX_CHUNK_SIZE = 6000
DEFAULT_OVERLAP = 500
DEFAULT_BOUNDARY_WINDOW = 500

# Cut points, checked right-most first; the cut includes the boundary itself
SENTENCE_BOUNDARIES = (". ", "! ", "? ", "\n\n")


class Chunker:
    """
    Splits raw text into an ordered list of chunk strings.

    Output is eager (a list) because the whole set is embedded and stored
    as one batch. Chunking is deterministic: the same text and parameters
    always produce the same boundaries.
    """

    def __init__(
        self,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        overlap: int = DEFAULT_OVERLAP,
        boundary_window: int = DEFAULT_BOUNDARY_WINDOW,
    ):
        if max_chunk_size <= 0:
            raise ValueError(f"max_chunk_size must be positive: {max_chunk_size}")
        if overlap < 0 or overlap >= max_chunk_size:
            raise ValueError(
                f"overlap must be in [0, max_chunk_size): {overlap}"
            )
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap
        self.boundary_window = max(0, min(boundary_window, max_chunk_size))

    def estimate_chunks(self, text: str) -> int:
        """Rough chunk count (ignores overlap), used for inline-vs-deferred decisions."""
        return -(-len(text) // self.max_chunk_size)

    def chunk_spans(self, text: str) -> list[tuple[int, int]]:
        """Return ``(start, end)`` offsets of each chunk in ``text``."""
        length = len(text)
        if length == 0:
            return []
        if length <= self.max_chunk_size:
            return [(0, length)]

        spans = []
        start = 0
        while start < length:
            end = min(start + self.max_chunk_size, length)
            if end < length:
                end = self._boundary_before(text, start, end)
            spans.append((start, end))
            if end >= length:
                break

            next_start = end - self.overlap
            if next_start <= start:
                next_start = end  # no progress from overlap; guarantee termination
            start = next_start
        return spans

    def chunk(self, text: str) -> list[str]:
        """Split ``text`` into overlapping, sentence-aware chunks."""
        return [text[start:end] for start, end in self.chunk_spans(text)]

    def _boundary_before(self, text: str, start: int, end: int) -> int:
        """Right-most sentence boundary in the tail of ``text[start:end]``, else ``end``."""
        search_from = max(start, end - self.boundary_window)
        best = -1
        for marker in SENTENCE_BOUNDARIES:
            pos = text.rfind(marker, search_from, end)
            if pos != -1:
                best = max(best, pos + len(marker))
        if best > start:
            return best
        return end


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """Convenience wrapper: chunk with a throwaway Chunker."""
    return Chunker(max_chunk_size=max_chunk_size, overlap=overlap).chunk(text)
