# analyzer/src/zift/entropy.py
import math
from collections import Counter


def shannon_entropy(text: str) -> float:
    """Shannon entropy in bits per character."""
    if not text:
        return 0.0
    counts = Counter(text)
    probs = [c/len(text) for c in counts.values()]
    return -sum(p * math.log2(p) for p in probs)
