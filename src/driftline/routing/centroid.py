"""Running-average branch centroid."""

from collections.abc import Sequence


def calculate_centroid(
    old_centroid: Sequence[float],
    new_embedding: Sequence[float],
    message_count: int,
) -> list[float]:
    """Fold one embedding into a running mean.

    ``new[i] = old[i] + (embedding[i] - old[i]) / message_count``, where
    ``message_count`` already includes the new message. An empty centroid is
    replaced by the embedding.

    Raises:
        ValueError: If the vectors differ in length or the count is not positive.
    """
    if len(old_centroid) == 0:
        return list(new_embedding)
    if len(old_centroid) != len(new_embedding):
        raise ValueError(
            f"Embedding has {len(new_embedding)} dimensions, centroid has {len(old_centroid)}"
        )
    if message_count < 1:
        raise ValueError("message_count must be at least 1")
    return [
        old + (new - old) / message_count
        for old, new in zip(old_centroid, new_embedding)
    ]
