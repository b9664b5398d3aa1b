# sourcing_service/services/quote_scoring.py
"""
Best-value scoring used by the quote comparison view.

Each quote earns up to 100 points:
    price     0-40  linear between the most expensive (0) and cheapest (40)
    tier      0-30  seller verification tier
    delivery  0-20  keyword tiers on the free-text delivery timeline
    terms     5-10  completeness of the terms text
"""
import re
from typing import List, Optional, Sequence

from sourcing_service.schemas.quote import (
    BestValue,
    ComparisonMetrics,
    QuoteResponse,
    QuoteScore,
    VerificationTier,
)

MAX_PRICE_SCORE = 40.0

TIER_SCORES = {
    VerificationTier.BASIC.value: 10,
    VerificationTier.STANDARD.value: 20,
    VerificationTier.ENHANCED.value: 25,
    VerificationTier.PREMIUM.value: 30,
}

# Checked in order, first match wins
DELIVERY_TIERS = (
    (re.compile(r"immediate|same[\s-]day"), 20),
    (re.compile(r"next[\s-]day|\b1[\s-]day\b"), 18),
    (re.compile(r"\b2\s*[-–]\s*3 days\b|\b2 days\b"), 15),
)
DEFAULT_DELIVERY_SCORE = 10
FAST_DELIVERY_SCORE = 20

TERMS_COMPLETE_LENGTH = 50
TERMS_DETAILED_LENGTH = 100


def price_score(price: float, lowest: float, highest: float) -> float:
    price_range = highest - lowest
    if price_range <= 0:
        return MAX_PRICE_SCORE
    return ((highest - price) / price_range) * MAX_PRICE_SCORE


def tier_score(verification_tier: Optional[str]) -> int:
    return TIER_SCORES.get((verification_tier or "").lower(), 0)


def delivery_score(delivery_timeline: Optional[str]) -> int:
    if not delivery_timeline:
        return DEFAULT_DELIVERY_SCORE
    timeline = delivery_timeline.lower()
    for pattern, score in DELIVERY_TIERS:
        if pattern.search(timeline):
            return score
    return DEFAULT_DELIVERY_SCORE


def terms_score(terms: Optional[str]) -> int:
    return 10 if terms and len(terms) > TERMS_COMPLETE_LENGTH else 5


def score_quote(quote: QuoteResponse, lowest: float, highest: float) -> QuoteScore:
    price = float(quote.total_price)
    tier = quote.seller.verification_tier if quote.seller else None

    p_score = price_score(price, lowest, highest)
    t_score = tier_score(tier)
    d_score = delivery_score(quote.delivery_timeline)
    c_score = terms_score(quote.terms_conditions)

    reasons = []
    if price == lowest:
        reasons.append("Lowest price")
    if tier == "premium":
        reasons.append("Premium verified seller")
    if d_score == FAST_DELIVERY_SCORE:
        reasons.append("Fast delivery")
    if quote.terms_conditions and len(quote.terms_conditions) > TERMS_DETAILED_LENGTH:
        reasons.append("Detailed terms provided")

    return QuoteScore(
        quote_id=quote.id,
        price_score=round(p_score, 2),
        tier_score=t_score,
        delivery_score=d_score,
        terms_score=c_score,
        total_score=round(p_score + t_score + d_score + c_score, 2),
        reasons=reasons,
    )


def build_comparison(quotes: Sequence[QuoteResponse]) -> ComparisonMetrics:
    """Price statistics plus per-quote scores; ties keep the earlier quote."""
    if not quotes:
        return ComparisonMetrics()

    prices = [float(q.total_price) for q in quotes]
    lowest = min(prices)
    highest = max(prices)
    average = sum(prices) / len(prices)

    scores: List[QuoteScore] = [score_quote(q, lowest, highest) for q in quotes]

    best: Optional[QuoteScore] = None
    for s in scores:
        if best is None or s.total_score > best.total_score:
            best = s

    return ComparisonMetrics(
        lowest_price=lowest,
        highest_price=highest,
        average_price=round(average, 2),
        price_range=highest - lowest,
        scores=scores,
        best_value=BestValue(
            quote_id=best.quote_id, score=best.total_score, reasons=best.reasons
        ),
    )
