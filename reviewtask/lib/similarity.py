"""
Text similarity for task descriptions.

Similarity is the Jaccard index of the lower-cased whitespace-separated word
sets of two descriptions: 1.0 for the same words in any order or spacing,
0.0 for no words in common.
"""


def normalize_description(text: str) -> str:
    """Lower-case and collapse all whitespace runs to single spaces."""
    return " ".join(text.lower().split())


def word_set(text: str) -> frozenset[str]:
    return frozenset(text.lower().split())


def similarity(a: str, b: str) -> float:
    words_a = word_set(a)
    words_b = word_set(b)
    if not words_a and not words_b:
        return 1.0
    union = words_a | words_b
    return len(words_a & words_b) / len(union)


def is_similar(a: str, b: str, threshold: float) -> bool:
    if normalize_description(a) == normalize_description(b):
        return True
    return similarity(a, b) >= threshold
