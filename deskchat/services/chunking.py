"""
Recursive character chunking for fetched pages.

Splits text on the coarsest separator that occurs (paragraphs, then lines,
then words, then characters) and merges the pieces back into windows of at
most ``chunk_size`` characters, carrying up to ``overlap`` characters of
the previous window into the next one.
"""

from dataclasses import dataclass, field

DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")


@dataclass
class Chunk:
    """A single text chunk with its metadata."""

    text: str
    metadata: dict = field(default_factory=dict)
    chunk_index: int = 0


def split_text(
    text: str,
    chunk_size: int = 300,
    overlap: int = 50,
    source: str = "",
) -> list[Chunk]:
    """
    Split text into overlapping chunks.

    Args:
        text: The document text.
        chunk_size: Maximum characters per chunk.
        overlap: Characters shared between consecutive chunks.
        source: Source URL recorded in each chunk's metadata.

    Returns:
        List of Chunk objects with text and metadata.
    """
    if overlap >= chunk_size:
        raise ValueError(
            f"overlap ({overlap}) must be smaller than chunk_size ({chunk_size})"
        )
    pieces = _recursive_split(text, list(DEFAULT_SEPARATORS), chunk_size, overlap)
    return [
        Chunk(text=piece, metadata={"source": source}, chunk_index=i)
        for i, piece in enumerate(pieces)
    ]


def _recursive_split(
    text: str, separators: list[str], chunk_size: int, overlap: int
) -> list[str]:
    """Split by the first separator present, recursing into oversized pieces."""
    separator = separators[-1]
    remaining: list[str] = []
    for i, candidate in enumerate(separators):
        if candidate == "":
            separator = candidate
            break
        if candidate in text:
            separator = candidate
            remaining = separators[i + 1 :]
            break

    splits = text.split(separator) if separator else list(text)
    chunks: list[str] = []
    fitting: list[str] = []

    for piece in splits:
        if not piece:
            continue
        if len(piece) < chunk_size:
            fitting.append(piece)
            continue
        if fitting:
            chunks.extend(_merge_splits(fitting, separator, chunk_size, overlap))
            fitting = []
        if remaining:
            chunks.extend(_recursive_split(piece, remaining, chunk_size, overlap))
        else:
            chunks.append(piece)

    if fitting:
        chunks.extend(_merge_splits(fitting, separator, chunk_size, overlap))
    return chunks


def _merge_splits(
    splits: list[str], separator: str, chunk_size: int, overlap: int
) -> list[str]:
    """Greedily join small pieces into windows, keeping a tail for overlap."""
    sep_len = len(separator)
    merged: list[str] = []
    window: list[str] = []
    total = 0

    for piece in splits:
        extra = len(piece) + (sep_len if window else 0)
        if window and total + extra > chunk_size:
            joined = separator.join(window).strip()
            if joined:
                merged.append(joined)
            # Drop from the front until the tail fits the overlap budget
            # and leaves room for the incoming piece.
            while window and (
                total > overlap
                or total + len(piece) + (sep_len if window else 0) > chunk_size
            ):
                total -= len(window[0]) + (sep_len if len(window) > 1 else 0)
                window.pop(0)
        window.append(piece)
        total += len(piece) + (sep_len if len(window) > 1 else 0)

    joined = separator.join(window).strip()
    if joined:
        merged.append(joined)
    return merged
