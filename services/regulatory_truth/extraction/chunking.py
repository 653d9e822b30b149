"""
Content Chunking
================

Splits evidence text into windows small enough for one model call.

Every chunk is an exact slice of the source text
(`chunk.content == text[chunk.start_char:chunk.end_char]`), so offsets
found inside a chunk translate directly back to the evidence.

Strategies:
- Structural: cut at section/article headings and paragraph breaks,
  packing adjacent sections up to the size limit
- Fixed: fixed-size windows with overlap, ending on a sentence or word
  boundary where possible

Version: 0.1.0
"""

import re
from dataclasses import dataclass
from enum import Enum

from shared.logging import get_logger

logger = get_logger(__name__)


class ChunkingStrategy(str, Enum):
    STRUCTURAL = "structural"
    FIXED = "fixed"


@dataclass(frozen=True)
class Chunk:
    """A window of the evidence text."""

    content: str
    index: int
    start_char: int
    end_char: int

    @property
    def estimated_tokens(self) -> int:
        return len(self.content) // ContentChunker.CHARS_PER_TOKEN


class ContentChunker:
    """Chunks evidence text for model-backed extraction."""

    # Approximate tokens per character (conservative estimate)
    CHARS_PER_TOKEN = 4

    SECTION_BREAK = re.compile(
        r"\n(?=(?:CHAPTER|ARTICLE|SECTION|PART|Article|Section|Članak|Čl\.)\s*\d)"
        r"|\n{2,}"
    )

    def __init__(
        self,
        strategy: ChunkingStrategy = ChunkingStrategy.STRUCTURAL,
        max_chunk_size: int = 6000,
        overlap_size: int = 300,
    ) -> None:
        if overlap_size >= max_chunk_size:
            raise ValueError("overlap_size must be smaller than max_chunk_size")
        self.strategy = strategy
        self.max_chunk_size = max_chunk_size
        self.overlap_size = overlap_size

    def chunk(self, text: str) -> list[Chunk]:
        if not text.strip():
            return []
        if len(text) <= self.max_chunk_size:
            return [Chunk(content=text, index=0, start_char=0, end_char=len(text))]

        if self.strategy == ChunkingStrategy.STRUCTURAL:
            spans = self._structural_spans(text)
        else:
            spans = self._fixed_spans(text, 0, len(text))

        chunks = [
            Chunk(content=text[start:end], index=i, start_char=start, end_char=end)
            for i, (start, end) in enumerate(spans)
            if text[start:end].strip()
        ]
        chunks = [
            Chunk(content=c.content, index=i, start_char=c.start_char, end_char=c.end_char)
            for i, c in enumerate(chunks)
        ]

        logger.debug(
            "content_chunked",
            strategy=self.strategy.value,
            chunks=len(chunks),
            chars=len(text),
        )
        return chunks

    def _structural_spans(self, text: str) -> list[tuple[int, int]]:
        """Pack section-delimited blocks into spans up to the size limit."""
        boundaries = sorted({0, len(text), *(m.start() for m in self.SECTION_BREAK.finditer(text))})
        blocks = list(zip(boundaries, boundaries[1:]))

        spans: list[tuple[int, int]] = []
        current_start: int | None = None
        current_end = 0

        for start, end in blocks:
            if end - start > self.max_chunk_size:
                if current_start is not None:
                    spans.append((current_start, current_end))
                    current_start = None
                spans.extend(self._fixed_spans(text, start, end))
                continue

            if current_start is None:
                current_start, current_end = start, end
            elif end - current_start <= self.max_chunk_size:
                current_end = end
            else:
                spans.append((current_start, current_end))
                current_start, current_end = start, end

        if current_start is not None:
            spans.append((current_start, current_end))
        return spans

    def _fixed_spans(self, text: str, begin: int, finish: int) -> list[tuple[int, int]]:
        """Fixed-size windows over text[begin:finish] with overlap."""
        spans: list[tuple[int, int]] = []
        pos = begin

        while pos < finish:
            end = min(pos + self.max_chunk_size, finish)

            if end < finish:
                window = text[pos:end]
                # Prefer ending after a sentence, then at a space
                sentence_end = max(window.rfind(". "), window.rfind(".\n"))
                if sentence_end > self.overlap_size:
                    end = pos + sentence_end + 1
                else:
                    space = window.rfind(" ")
                    if space > self.overlap_size:
                        end = pos + space

            spans.append((pos, end))
            if end >= finish:
                break
            pos = max(end - self.overlap_size, pos + 1)

        return spans
