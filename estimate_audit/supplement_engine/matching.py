"""
Reconciliation matcher for the supplement comparison engine.

Pass 3: Pair revised items with original items.

Process:
1. Clean descriptions once per item
2. Build the revised x original similarity matrix (row blocks, optionally threaded)
3. Generate candidates that clear the matching threshold
4. Greedy assignment over a deterministically ordered candidate list
5. Flag near-ties for manual review
"""

import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Set, Tuple

import structlog

from estimate_audit.supplement_engine.context import AnalysisContext
from estimate_audit.supplement_engine.models import (
    ClassifiedLineItem,
    MatchCriteria,
    MatchedPair,
    MatchingAlgorithm,
    ReconciliationResult,
)
from estimate_audit.supplement_engine.reference_data import normalize_hint
from estimate_audit.utils.decimal_math import ZERO, round_score

logger = structlog.get_logger(__name__)

# Score component weights
EXACT_WEIGHT = 0.4
FUZZY_WEIGHT = 0.3
CATEGORY_WEIGHT = 0.2
PRICE_WEIGHT = 0.1

# Price similarity reaches 0 once the difference exceeds this share of the average
PRICE_BAND = Decimal("0.5")

# Candidates within this distance of the accepted score count as ties
AMBIGUITY_EPSILON = 0.001

ROW_BLOCK_SIZE = 64


# =============================================================================
# Description Similarity
# =============================================================================

class DescriptionMatcher:
    """
    Compares line item descriptions.

    Exact comparison uses case-folded, whitespace-collapsed text. Fuzzy
    comparison also strips punctuation, expands estimate abbreviations
    and drops stop words before taking a Levenshtein ratio.
    """

    STOPWORDS = {
        "the", "a", "an", "and", "of", "for", "to", "with", "in", "on", "at", "by", "w",
    }

    ABBREVIATIONS = {
        "frt": "front",
        "fr": "front",
        "rr": "rear",
        "lt": "left",
        "lh": "left",
        "rt": "right",
        "rh": "right",
        "assy": "assembly",
        "bmpr": "bumper",
        "cvr": "cover",
        "pnl": "panel",
        "qtr": "quarter",
        "reinf": "reinforcement",
        "hdlp": "headlamp",
        "whl": "wheel",
        "ctr": "center",
        "upr": "upper",
        "lwr": "lower",
    }

    _PUNCTUATION = re.compile(r"[^\w\s]")
    _WHITESPACE = re.compile(r"\s+")

    def exact_form(self, description: str) -> str:
        return self._WHITESPACE.sub(" ", description.casefold()).strip()

    def fuzzy_form(self, description: str) -> str:
        text = self._PUNCTUATION.sub(" ", description.casefold())
        words = []
        for word in text.split():
            word = self.ABBREVIATIONS.get(word, word)
            if word not in self.STOPWORDS:
                words.append(word)
        return " ".join(words)

    def fuzzy_score(self, s1: str, s2: str) -> float:
        """Calculate fuzzy match score using Levenshtein distance."""
        if not s1 and not s2:
            return 1.0
        if not s1 or not s2:
            return 0.0

        max_len = max(len(s1), len(s2))
        distance = self._levenshtein_distance(s1, s2)
        return 1.0 - (distance / max_len)

    def _levenshtein_distance(self, s1: str, s2: str) -> int:
        """Calculate Levenshtein distance between two strings."""
        if len(s1) < len(s2):
            return self._levenshtein_distance(s2, s1)

        if len(s2) == 0:
            return len(s1)

        previous_row = list(range(len(s2) + 1))
        for i, c1 in enumerate(s1):
            current_row = [i + 1]
            for j, c2 in enumerate(s2):
                insertions = previous_row[j + 1] + 1
                deletions = current_row[j] + 1
                substitutions = previous_row[j] + (c1 != c2)
                current_row.append(min(insertions, deletions, substitutions))
            previous_row = current_row

        return previous_row[-1]


def price_range_similarity(price1: Decimal, price2: Decimal) -> float:
    """1.0 for equal prices, falling linearly to 0 at a 50%-of-average gap."""
    average = (abs(price1) + abs(price2)) / 2
    if average == ZERO:
        return 1.0
    similarity = 1 - abs(price1 - price2) / (average * PRICE_BAND)
    return float(max(similarity, ZERO))


# =============================================================================
# Matcher
# =============================================================================

@dataclass(frozen=True)
class _Profile:
    """Per-item values reused for every cell of the matrix."""
    exact: str
    fuzzy: str
    hint: Optional[str]
    category: str


@dataclass
class MatchCandidate:
    """A scored (revised, original) pairing that clears the threshold."""
    revised_index: int
    original_index: int
    score: float
    criteria: MatchCriteria


MatrixRow = List[Optional[Tuple[float, MatchCriteria]]]


class ReconciliationMatcher:
    """
    Greedy best-first bipartite matcher.

    Items live in two flat lists; the result of assignment is an index
    map from revised position to original position.
    """

    def __init__(self, description_matcher: Optional[DescriptionMatcher] = None):
        self._descriptions = description_matcher or DescriptionMatcher()

    def reconcile(
        self,
        original: Sequence[ClassifiedLineItem],
        revised: Sequence[ClassifiedLineItem],
        context: AnalysisContext,
    ) -> ReconciliationResult:
        """
        Partition both estimates into matched, removed and new items.

        Args:
            original: Classified items of the original estimate.
            revised: Classified items of the revised estimate.
            context: Run context (options, cancellation).

        Returns:
            ReconciliationResult forming a strict partition of both inputs.
        """
        options = context.options
        logger.info(
            "Starting reconciliation",
            original=len(original),
            revised=len(revised),
            algorithm=options.matching_algorithm.value,
            threshold=options.fuzzy_threshold,
        )

        matrix = self.build_matrix(original, revised, context)
        candidates = self._generate_candidates(matrix, original, revised, options.fuzzy_threshold)
        logger.debug("Generated candidates", count=len(candidates))

        assignment, ambiguous = self._greedy_assign(candidates, original, revised)

        pairs: List[MatchedPair] = []
        for revised_index in sorted(assignment):
            original_index, candidate = assignment[revised_index]
            alternatives = ambiguous.get(revised_index, [])
            pairs.append(MatchedPair(
                original=original[original_index],
                revised=revised[revised_index],
                match_score=candidate.score,
                match_criteria=candidate.criteria,
                is_ambiguous=bool(alternatives),
                alternative_original_ids=alternatives,
            ))

        used_original = {original_index for original_index, _ in assignment.values()}
        result = ReconciliationResult(
            matched_pairs=pairs,
            unmatched_original=[o for i, o in enumerate(original) if i not in used_original],
            new_supplement_items=[r for i, r in enumerate(revised) if i not in assignment],
            matching_accuracy=self._accuracy(len(pairs), len(original), len(revised)),
        )

        logger.info(
            "Reconciliation complete",
            matched=len(result.matched_pairs),
            removed=len(result.unmatched_original),
            added=len(result.new_supplement_items),
            ambiguous=len(result.ambiguous_pairs),
            accuracy=result.matching_accuracy,
        )
        return result

    # -------------------------------------------------------------------------
    # Similarity matrix
    # -------------------------------------------------------------------------

    def build_matrix(
        self,
        original: Sequence[ClassifiedLineItem],
        revised: Sequence[ClassifiedLineItem],
        context: AnalysisContext,
    ) -> List[MatrixRow]:
        """
        Score every (revised, original) cell.

        Rows are computed in blocks; the cancel flag is checked between
        blocks. Threaded construction returns the same matrix as serial.
        """
        options = context.options
        original_profiles = [self._profile(o) for o in original]
        revised_profiles = [self._profile(r) for r in revised]

        blocks = [
            range(start, min(start + ROW_BLOCK_SIZE, len(revised)))
            for start in range(0, len(revised), ROW_BLOCK_SIZE)
        ]

        def score_block(rows: range) -> List[MatrixRow]:
            context.check_cancelled()
            return [
                [
                    self._score_candidate(
                        original[o], revised[r], original_profiles[o], revised_profiles[r],
                        options.matching_algorithm,
                    )
                    for o in range(len(original))
                ]
                for r in rows
            ]

        cells = len(original) * len(revised)
        matrix: List[MatrixRow] = []

        if options.matrix_workers > 1 and cells >= options.parallel_matrix_min_cells and len(blocks) > 1:
            logger.debug("Building similarity matrix in parallel", cells=cells, workers=options.matrix_workers)
            with ThreadPoolExecutor(max_workers=options.matrix_workers) as executor:
                futures = [executor.submit(score_block, block) for block in blocks]
                try:
                    for future in futures:
                        matrix.extend(future.result())
                except BaseException:
                    for future in futures:
                        future.cancel()
                    raise
        else:
            for block in blocks:
                matrix.extend(score_block(block))

        context.check_cancelled()
        return matrix

    def _profile(self, item: ClassifiedLineItem) -> _Profile:
        description = item.item.description
        return _Profile(
            exact=self._descriptions.exact_form(description),
            fuzzy=self._descriptions.fuzzy_form(description),
            hint=normalize_hint(item.item.category_hint) if item.item.category_hint else None,
            category=item.attributes.cost_category.value,
        )

    def _score_candidate(
        self,
        original: ClassifiedLineItem,
        revised: ClassifiedLineItem,
        original_profile: _Profile,
        revised_profile: _Profile,
        algorithm: MatchingAlgorithm,
    ) -> Optional[Tuple[float, MatchCriteria]]:
        """Score a candidate pairing; None when the algorithm excludes it."""
        exact = original_profile.exact == revised_profile.exact
        if algorithm == MatchingAlgorithm.EXACT and not exact:
            return None

        criteria = MatchCriteria(
            exact_description=1.0 if exact else 0.0,
            fuzzy_description=round_score(
                self._descriptions.fuzzy_score(original_profile.fuzzy, revised_profile.fuzzy)
            ),
            category=1.0 if self._categories_agree(original_profile, revised_profile) else 0.0,
            price_range=round_score(
                price_range_similarity(original.item.unit_price, revised.item.unit_price)
            ),
        )

        if exact and criteria.category == 1.0 and algorithm != MatchingAlgorithm.FUZZY:
            return 1.0, criteria

        score = (
            criteria.exact_description * EXACT_WEIGHT +
            criteria.fuzzy_description * FUZZY_WEIGHT +
            criteria.category * CATEGORY_WEIGHT +
            criteria.price_range * PRICE_WEIGHT
        )
        return round_score(min(max(score, 0.0), 1.0)), criteria

    def _categories_agree(self, original: _Profile, revised: _Profile) -> bool:
        """Compare explicit hints when both sides carry one, else inferred cost categories."""
        if original.hint and revised.hint:
            return original.hint == revised.hint
        return original.category == revised.category

    # -------------------------------------------------------------------------
    # Assignment
    # -------------------------------------------------------------------------

    @staticmethod
    def clears_threshold(score: float, threshold: float) -> bool:
        """A pairing must beat the threshold; a perfect score always qualifies."""
        return score >= 1.0 or score > threshold

    def _generate_candidates(
        self,
        matrix: List[MatrixRow],
        original: Sequence[ClassifiedLineItem],
        revised: Sequence[ClassifiedLineItem],
        threshold: float,
    ) -> List[MatchCandidate]:
        """Candidates sorted by score desc, then revised id, then original id."""
        candidates = []
        for r, row in enumerate(matrix):
            for o, cell in enumerate(row):
                if cell is None:
                    continue
                score, criteria = cell
                if self.clears_threshold(score, threshold):
                    candidates.append(MatchCandidate(r, o, score, criteria))

        candidates.sort(key=lambda c: (-c.score, revised[c.revised_index].id, original[c.original_index].id))
        return candidates

    def _greedy_assign(
        self,
        candidates: List[MatchCandidate],
        original: Sequence[ClassifiedLineItem],
        revised: Sequence[ClassifiedLineItem],
    ) -> Tuple[Dict[int, Tuple[int, MatchCandidate]], Dict[int, List[str]]]:
        """Perform greedy assignment (no original or revised reuse)."""
        assignment: Dict[int, Tuple[int, MatchCandidate]] = {}
        ambiguous: Dict[int, List[str]] = {}
        used_original: Set[int] = set()

        by_revised: Dict[int, List[MatchCandidate]] = {}
        for candidate in candidates:
            by_revised.setdefault(candidate.revised_index, []).append(candidate)

        for candidate in candidates:
            if candidate.revised_index in assignment or candidate.original_index in used_original:
                continue

            ties = [
                original[other.original_index].id
                for other in by_revised[candidate.revised_index]
                if other.original_index != candidate.original_index
                and other.original_index not in used_original
                and candidate.score - other.score <= AMBIGUITY_EPSILON
            ]
            if ties:
                ambiguous[candidate.revised_index] = ties
                logger.info(
                    "Ambiguous match resolved by tie-break",
                    revised_id=revised[candidate.revised_index].id,
                    original_id=original[candidate.original_index].id,
                    alternatives=ties,
                    score=candidate.score,
                )

            assignment[candidate.revised_index] = (candidate.original_index, candidate)
            used_original.add(candidate.original_index)

        return assignment, ambiguous

    def _accuracy(self, matched: int, n: int, m: int) -> float:
        largest = max(n, m)
        if largest == 0:
            return 0.0
        return round_score(matched / largest)


def get_reconciliation_matcher() -> ReconciliationMatcher:
    """Get ReconciliationMatcher instance."""
    return ReconciliationMatcher()
