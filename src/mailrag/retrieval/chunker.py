"""
Email body chunking.

Splits a body into word-aligned chunks bounded by a character budget.
Chunk order is significant: the i-th chunk gets order index i + 1.
"""


def chunk_text(text: str, budget: int) -> list[str]:
    """
    Split text into chunks of at most ``budget`` characters.

    Words are joined with single spaces and never split, so a word longer
    than the budget becomes a chunk of its own.

    Args:
        text: Email body to chunk
        budget: Maximum chunk length in characters

    Returns:
        Ordered list of non-empty chunks

    Raises:
        ValueError: If budget <= 0
    """
    if budget <= 0:
        raise ValueError(f"budget must be positive, got {budget}")

    chunks: list[str] = []
    current = ""

    for word in text.split():
        if not current:
            current = word
        elif len(current) + 1 + len(word) > budget:
            chunks.append(current)
            current = word
        else:
            current = f"{current} {word}"

    if current:
        chunks.append(current)

    return chunks
