import asyncio
from datetime import date

import pytest

from lottery_forecast.db.crud import drawing as drawing_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.errors import UnknownDrawing
from lottery_forecast.ml.evaluation.accuracy import count_matches, score
from lottery_forecast.schemas.lottery import DrawingCreate, VerificationStatus


# ── pure scoring ──────────────────────────────────────────────────────

def test_ssq_jackpot(ssq):
    outcome = score([1, 2, 3, 4, 5, 6], [7], [1, 2, 3, 4, 5, 6], [7], ssq, payout=5_000_000.0)
    assert outcome.match_count == 6
    assert outcome.special_match_count == 1
    assert outcome.accuracy_score == 100.0
    assert outcome.is_winner
    assert outcome.prize_tier == 1
    assert outcome.prize_amount == 5_000_000.0


def test_ssq_no_match(ssq):
    outcome = score([1, 2, 3, 4, 5, 6], [7], [10, 11, 12, 13, 14, 15], [8], ssq)
    assert outcome.match_count == 0
    assert outcome.accuracy_score == 0.0
    assert not outcome.is_winner
    assert outcome.prize_tier is None
    assert outcome.prize_amount is None


def test_ssq_partial_match_accuracy(ssq):
    outcome = score([1, 2, 3, 4, 5, 6], [7], [1, 2, 3, 20, 21, 22], [7], ssq)
    assert outcome.match_count == 3
    assert outcome.accuracy_score == pytest.approx(100.0 * 4 / 7, abs=1e-4)
    assert not outcome.is_winner


def test_first_satisfied_tier_wins(rules):
    dlt = rules.get_rule("dlt")
    outcome = score([1, 2, 3, 4, 5], [1, 2], [1, 2, 3, 4, 30], [5, 6], dlt)
    # (4, 0) is the first tier in table order that four main matches satisfy
    assert outcome.prize_tier == 7


def test_pari_mutuel_amount_unknown_without_payout(ssq):
    outcome = score([1, 2, 3, 4, 5, 6], [7], [1, 2, 3, 4, 5, 6], [8], ssq)
    assert outcome.prize_tier == 2
    assert outcome.prize_amount is None


@pytest.mark.parametrize(
    "predicted, actual, tier, amount",
    [
        ([1, 2, 3], [1, 2, 3], 1, 1040.0),
        ([1, 2, 3], [3, 2, 1], 2, 346.0),
        ([1, 2, 3], [1, 1, 2], 3, 173.0),
        ([4, 5, 6], [1, 2, 3], None, None),
    ],
)
def test_digit_tiers(fc3d, predicted, actual, tier, amount):
    outcome = score(predicted, [], actual, [], fc3d)
    assert outcome.prize_tier == tier
    assert outcome.prize_amount == amount


def test_count_matches_is_multiset():
    assert count_matches([1, 2, 3], [1, 1, 2]) == 2
    assert count_matches([1, 1, 2], [1, 1, 1]) == 2


# ── reconciliation ────────────────────────────────────────────────────

async def _predict_today(engine):
    return await engine.predict_numbers("ssq", "statistical", target_date=date.today())


async def test_reconcile_resolves_winning_prediction(seeded_engine):
    engine = seeded_engine
    prediction = await _predict_today(engine)
    drawing = await engine.store_drawing(DrawingCreate(
        lottery_type="ssq",
        draw_number="today",
        draw_date=date.today(),
        winning_numbers=prediction.predicted_numbers,
        special_numbers=prediction.predicted_special_numbers,
        prize_distribution={"1": 5_000_000.0},
    ))

    pending = await engine.evaluator.reconcile(drawing.id)
    assert pending.resolved == 0

    async with engine.session_factory() as session:
        await drawing_crud.set_verification_status(session, drawing.id, "verified")
        await session.commit()

    summary = await engine.evaluator.reconcile(drawing.id)
    assert (summary.visited, summary.resolved, summary.winners) == (1, 1, 1)

    replay = await engine.evaluator.reconcile(drawing.id)
    assert replay.resolved == 0

    [stored] = await engine.get_prediction_history("ssq")
    assert stored.actual_draw_id == drawing.id
    assert stored.is_winner
    assert stored.prize_tier == 1
    assert stored.prize_amount == 5_000_000.0
    assert stored.accuracy_score == 100.0

    async with engine.session_factory() as session:
        strategy = await strategy_crud.get_strategy(session, prediction.strategy_id)
        assert strategy.total_predictions == 1
        assert strategy.successful_predictions == 1


async def test_verification_triggers_background_reconciliation(seeded_engine):
    engine = seeded_engine
    prediction = await _predict_today(engine)
    losing = [n for n in range(1, 34) if n not in prediction.predicted_numbers][:6]
    drawing = await engine.store_drawing(DrawingCreate(
        lottery_type="ssq",
        draw_number="today",
        draw_date=date.today(),
        winning_numbers=losing,
        special_numbers=[16 if prediction.predicted_special_numbers != [16] else 15],
    ))
    verified = await engine.verify_drawing(drawing.id)
    assert verified.verification_status == VerificationStatus.VERIFIED

    for _ in range(100):
        [stored] = await engine.get_prediction_history("ssq")
        if stored.actual_draw_id is not None:
            break
        await asyncio.sleep(0.05)
    assert stored.actual_draw_id == drawing.id
    assert not stored.is_winner
    assert stored.match_count == 0


async def test_reconcile_pending_sweeps_verified_drawings(seeded_engine):
    engine = seeded_engine
    prediction = await _predict_today(engine)
    async with engine.session_factory() as session:
        await drawing_crud.create_drawing(session, {
            "lottery_type": "ssq",
            "draw_number": "today",
            "draw_date": date.today(),
            "winning_numbers": prediction.predicted_numbers,
            "special_numbers": [1],
            "verification_status": "verified",
        })
        await session.commit()

    results = await engine.reconcile_pending()
    assert [r.resolved for r in results] == [1]
    assert await engine.reconcile_pending() == []


async def test_reconcile_unknown_drawing(engine):
    with pytest.raises(UnknownDrawing):
        await engine.evaluator.reconcile(999_999)
