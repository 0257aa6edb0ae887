"""Accuracy evaluator. Resolves stored predictions against verified drawings."""

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lottery_forecast.db.crud import drawing as drawing_crud
from lottery_forecast.db.crud import prediction as prediction_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.errors import StorageError, UnknownDrawing
from lottery_forecast.locks import KeyedLocks
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.schemas.lottery import (
    CountRequirement,
    DigitRequirement,
    Distribution,
    LotteryRuleSet,
    PrizeTier,
    VerificationStatus,
)
from lottery_forecast.schemas.prediction import DrawingReconciliation


@dataclass(frozen=True)
class Outcome:
    match_count: int
    special_match_count: int
    accuracy_score: float
    is_winner: bool
    prize_tier: int | None
    prize_amount: float | None

    def to_values(self) -> dict:
        return {
            "match_count": self.match_count,
            "special_match_count": self.special_match_count,
            "accuracy_score": self.accuracy_score,
            "is_winner": self.is_winner,
            "prize_tier": self.prize_tier,
            "prize_amount": self.prize_amount,
        }


class PayoutProvider(Protocol):
    def amount(self, rule: LotteryRuleSet, tier: int, drawing) -> float | None:
        """Prize amount for a pari-mutuel tier, or None when not known yet."""
        ...


class DrawingPayoutProvider:
    """Reads the externally supplied per-tier amounts stored on the drawing."""

    def amount(self, rule: LotteryRuleSet, tier: int, drawing) -> float | None:
        distribution = getattr(drawing, "prize_distribution", None) or {}
        value = distribution.get(str(tier))
        return float(value) if value is not None else None


# ── pure scoring ──────────────────────────────────────────────────────

def count_matches(predicted: Sequence[int], actual: Sequence[int]) -> int:
    """Multiset intersection size (digit games may repeat digits)."""
    return sum((Counter(predicted) & Counter(actual)).values())


def tier_satisfied(
    tier: PrizeTier,
    predicted: Sequence[int],
    actual: Sequence[int],
    main_matches: int,
    special_matches: int,
) -> bool:
    req = tier.requirement
    if isinstance(req, CountRequirement):
        return main_matches >= req.main_match and special_matches >= req.special_match
    if isinstance(req, DigitRequirement):
        if req.match == "exact" and req.order == "exact":
            return list(predicted) == list(actual)
        if req.match == "exact":
            return Counter(predicted) == Counter(actual)
        return bool(actual) and set(actual) <= set(predicted)
    return False


def find_tier(
    rule: LotteryRuleSet,
    predicted: Sequence[int],
    actual: Sequence[int],
    main_matches: int,
    special_matches: int,
) -> PrizeTier | None:
    """First satisfied tier in ascending tier order."""
    for tier in sorted(rule.tiers, key=lambda t: t.tier):
        if tier_satisfied(tier, predicted, actual, main_matches, special_matches):
            return tier
    return None


def score(
    predicted: Sequence[int],
    predicted_special: Sequence[int],
    actual: Sequence[int],
    actual_special: Sequence[int],
    rule: LotteryRuleSet,
    payout: float | None = None,
) -> Outcome:
    """Score one prediction against one drawing.

    `payout` is the externally supplied amount for pari-mutuel rules; fixed
    rules take the amount from the tier table.
    """
    main_matches = count_matches(predicted, actual)
    special_matches = count_matches(predicted_special, actual_special)
    total = rule.main_count + rule.special_count
    accuracy = round(100.0 * (main_matches + special_matches) / total, 4) if total else 0.0

    tier = find_tier(rule, predicted, actual, main_matches, special_matches)
    amount = None
    if tier is not None:
        amount = tier.prize_amount if rule.distribution == Distribution.FIXED else payout
    return Outcome(
        match_count=main_matches,
        special_match_count=special_matches,
        accuracy_score=accuracy,
        is_winner=tier is not None,
        prize_tier=tier.tier if tier else None,
        prize_amount=amount,
    )


# ── reconciliation ────────────────────────────────────────────────────

class AccuracyEvaluator:
    """Resolves unresolved predictions when their target drawing is verified.

    Each prediction is resolved and folded into its strategy's counters in its
    own transaction; replays are no-ops because the resolving update only
    matches while actual_draw_id is unset.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rules: RuleRegistry,
        *,
        payouts: PayoutProvider | None = None,
        stats_locks: KeyedLocks | None = None,
    ):
        self.session_factory = session_factory
        self.rules = rules
        self.payouts = payouts or DrawingPayoutProvider()
        self.stats_locks = stats_locks or KeyedLocks()

    def _outcome(self, prediction, drawing, rule: LotteryRuleSet) -> Outcome:
        outcome = score(
            prediction.predicted_numbers,
            prediction.predicted_special_numbers or [],
            drawing.winning_numbers,
            drawing.special_numbers or [],
            rule,
        )
        if outcome.is_winner and rule.distribution == Distribution.PARI_MUTUEL:
            amount = self.payouts.amount(rule, outcome.prize_tier, drawing)
            outcome = Outcome(**{**outcome.to_values(), "prize_amount": amount})
        return outcome

    async def reconcile(self, drawing_id: int) -> DrawingReconciliation:
        try:
            async with self.session_factory() as session:
                drawing = await drawing_crud.get_drawing(session, drawing_id)
                if drawing is None:
                    raise UnknownDrawing(f"Drawing {drawing_id} not found")
                summary = DrawingReconciliation(
                    drawing_id=drawing.id,
                    lottery_type=drawing.lottery_type,
                    draw_date=drawing.draw_date,
                    visited=0,
                    resolved=0,
                    winners=0,
                )
                if drawing.verification_status != VerificationStatus.VERIFIED:
                    logger.debug("Drawing {} is {}, skipping reconciliation", drawing_id, drawing.verification_status)
                    return summary

                rule = self.rules.get_rule(drawing.lottery_type)
                predictions = await prediction_crud.list_unresolved_for_date(
                    session, drawing.lottery_type, drawing.draw_date
                )
                for prediction in predictions:
                    summary.visited += 1
                    outcome = self._outcome(prediction, drawing, rule)
                    async with self.stats_locks(prediction.strategy_id):
                        resolved = await prediction_crud.resolve_prediction(session, prediction.id, {
                            **outcome.to_values(),
                            "actual_draw_id": drawing.id,
                            "validation_date": datetime.now(),
                        })
                        if resolved:
                            await strategy_crud.record_prediction_outcome(
                                session, prediction.strategy_id, is_winner=outcome.is_winner
                            )
                        await session.commit()
                    if resolved:
                        summary.resolved += 1
                        summary.winners += int(outcome.is_winner)
        except SQLAlchemyError as e:
            raise StorageError(f"Reconciliation of drawing {drawing_id} failed: {e}") from e

        logger.info(
            "Reconciled {} {}: {} visited, {} resolved, {} winners",
            summary.lottery_type, summary.draw_date, summary.visited, summary.resolved, summary.winners,
        )
        return summary

    async def reconcile_pending(self) -> list[DrawingReconciliation]:
        """Sweep every verified drawing that still has unresolved predictions."""
        try:
            async with self.session_factory() as session:
                drawing_ids = [d.id for d in await drawing_crud.list_verified_with_unresolved(session)]
        except SQLAlchemyError as e:
            raise StorageError(f"Listing drawings to reconcile failed: {e}") from e

        results = []
        for drawing_id in drawing_ids:
            try:
                results.append(await self.reconcile(drawing_id))
            except StorageError as e:
                # Picked up again by the next sweep
                logger.error("Reconciliation of drawing {} failed: {}", drawing_id, e)
        return results
