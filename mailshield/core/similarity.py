"""
String similarity based on Levenshtein edit distance
Used to spot look-alike (typosquatted) sender domains
"""


def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning `a` into `b`"""
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)

    # Two rolling rows over the shorter string
    previous = list(range(len(shorter) + 1))
    for i, long_char in enumerate(longer, start=1):
        current = [i] + [0] * len(shorter)
        for j, short_char in enumerate(shorter, start=1):
            if long_char == short_char:
                current[j] = previous[j - 1]
            else:
                current[j] = min(
                    previous[j - 1] + 1,  # substitution
                    current[j - 1] + 1,   # insertion
                    previous[j] + 1,      # deletion
                )
        previous = current

    return previous[len(shorter)]


def string_similarity(a: str, b: str) -> float:
    """
    Normalized similarity in [0, 1], where 1.0 means identical.

    Both inputs are lower-cased first; domains are case-insensitive.
    """
    a = a.lower()
    b = b.lower()
    longer_len = max(len(a), len(b))
    if longer_len == 0:
        return 1.0

    return (longer_len - levenshtein_distance(a, b)) / longer_len
