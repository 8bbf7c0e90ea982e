"""
Subword token merging for token-classification output.

Transformer NER models label word pieces with BIO tags ("B-PER", "I-PER",
"O"). This module folds those pieces back into whole entities whose text is
re-sliced from the original document, so "Mü" + "##ller" becomes "Müller"
with exact offsets.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

MAX_TOKEN_GAP = 5
OUTSIDE = "O"


def extract_entity_type(label: str) -> Tuple[Optional[str], str]:
    """
    Split a BIO label into (prefix, type).

    "B-PER" -> ("B", "PER"), "I-ORG" -> ("I", "ORG"), "O" -> (None, "O").
    A bare label such as "PER" is treated as the beginning of an entity.
    """
    if not label or label == OUTSIDE:
        return None, OUTSIDE
    if len(label) > 2 and label[1] == "-" and label[0].upper() in "BIES":
        prefix = label[0].upper()
        # E-/S- tags from BIOES schemes: S opens, E continues
        if prefix == "S":
            prefix = "B"
        elif prefix == "E":
            prefix = "I"
        return prefix, label[2:]
    return "B", label


def _token_label(token: Dict[str, Any]) -> str:
    return token.get("entity") or token.get("entity_group") or token.get("tag") or OUTSIDE


class _OpenEntity:
    __slots__ = ("entity_type", "start", "end", "scores", "token_count")

    def __init__(self, entity_type: str, start: int, end: int, score: float, token_count: int):
        self.entity_type = entity_type
        self.start = start
        self.end = end
        self.scores = [score]
        self.token_count = token_count

    def extend(self, end: int, score: float, token_count: int) -> None:
        self.end = max(self.end, end)
        self.scores.append(score)
        self.token_count += token_count

    def confidence(self, weighted: bool) -> float:
        if not weighted:
            return sum(self.scores) / len(self.scores)
        weights = [1.0 / (i + 1) for i in range(len(self.scores))]
        return sum(s * w for s, w in zip(self.scores, weights)) / sum(weights)


def merge_subword_tokens(
    tokens: Sequence[Dict[str, Any]],
    text: str,
    min_length: int = 2,
    weighted: bool = False,
    max_gap: int = MAX_TOKEN_GAP,
) -> List[Dict[str, Any]]:
    """
    Merge BIO-tagged subword tokens into entities.

    Args:
        tokens: Token dicts with word, entity (or entity_group), score, start, end
        text: Original text the offsets refer to
        min_length: Drop merged entities shorter than this many characters
        weighted: Weight earlier tokens more (1/(i+1)) when averaging scores
        max_gap: Largest character gap an I- token may bridge

    Returns:
        Entity dicts: word, entity, score, start, end, token_count.
        Already-merged input comes back unchanged.
    """
    merged: List[_OpenEntity] = []
    current: Optional[_OpenEntity] = None

    for token in sorted(tokens, key=lambda t: (t.get("start", 0), t.get("end", 0))):
        start = token.get("start")
        end = token.get("end")
        if start is None or end is None:
            continue
        prefix, entity_type = extract_entity_type(_token_label(token))
        score = float(token.get("score", 0.0))
        count = int(token.get("token_count", 1))

        if prefix is None:
            if current is not None:
                merged.append(current)
                current = None
            continue

        continues = (
            prefix == "I"
            and current is not None
            and current.entity_type == entity_type
            and start - current.end <= max_gap
        )
        if continues:
            current.extend(end, score, count)
            continue

        if current is not None:
            merged.append(current)
        current = _OpenEntity(entity_type, start, end, score, count)

    if current is not None:
        merged.append(current)

    results = []
    for entity in merged:
        word = text[entity.start:entity.end]
        if len(word.strip()) < min_length:
            continue
        results.append({
            "word": word,
            "entity": entity.entity_type,
            "score": entity.confidence(weighted),
            "start": entity.start,
            "end": entity.end,
            "token_count": entity.token_count,
        })

    logger.debug(f"Merged {len(tokens)} tokens into {len(results)} entities")
    return results
