from datetime import date, timedelta

import numpy as np
import pytest

from lottery_forecast.config import Settings
from lottery_forecast.db.crud import drawing as drawing_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.ml.features.window import Draw, DrawWindow
from lottery_forecast.rules import RuleRegistry
from lottery_forecast.services.forecast_service import ForecastEngine


def synthetic_draws(rule, n, *, end=None, seed=42, step_days=2):
    """n reproducible random draws, one every `step_days`, ending at `end`."""
    rng = np.random.default_rng(seed)
    end = end or date.today() - timedelta(days=1)
    lo, hi = rule.main_range
    draws = []
    for i in range(n):
        draw_date = end - timedelta(days=step_days * (n - 1 - i))
        if rule.allow_repeats:
            numbers = rng.integers(lo, hi + 1, size=rule.main_count).tolist()
        else:
            numbers = sorted(rng.choice(np.arange(lo, hi + 1), size=rule.main_count, replace=False).tolist())
        specials = []
        if rule.special_count:
            s_lo, s_hi = rule.special_range
            specials = sorted(
                rng.choice(np.arange(s_lo, s_hi + 1), size=rule.special_count, replace=False).tolist()
            )
        draws.append(Draw(
            draw_number=f"{draw_date:%Y%m%d}",
            draw_date=draw_date,
            numbers=tuple(numbers),
            specials=tuple(specials),
        ))
    return draws


def make_window(rule, n, **kwargs) -> DrawWindow:
    return DrawWindow(rule, tuple(synthetic_draws(rule, n, **kwargs)))


async def insert_draws(engine: ForecastEngine, draws, lottery_type, status="verified"):
    async with engine.session_factory() as session:
        for d in draws:
            await drawing_crud.create_drawing(session, {
                "lottery_type": lottery_type,
                "draw_number": d.draw_number,
                "draw_date": d.draw_date,
                "winning_numbers": list(d.numbers),
                "special_numbers": list(d.specials),
                "verification_status": status,
            })
        await session.commit()


async def create_strategy(engine: ForecastEngine, algorithm_type: str, parameters: dict, name=None) -> int:
    async with engine.session_factory() as session:
        strategy = await strategy_crud.create_strategy(session, {
            "name": name or f"test {algorithm_type}",
            "algorithm_type": algorithm_type,
            "parameters": parameters,
        })
        await session.commit()
        return strategy.id


@pytest.fixture
def rules():
    return RuleRegistry()


@pytest.fixture
def ssq(rules):
    return rules.get_rule("ssq")


@pytest.fixture
def fc3d(rules):
    return rules.get_rule("fc3d")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'forecast.db'}",
        MODEL_ARTIFACTS_DIR=tmp_path / "models",
        PREDICTION_WORKERS=2,
        TRAINING_WORKERS=2,
        TRAINING_TIMEOUT_SECONDS=120.0,
        SCHEDULER_ENABLED=False,
    )


@pytest.fixture
async def engine(settings):
    engine = ForecastEngine(settings)
    await engine.start()
    yield engine
    await engine.close()


@pytest.fixture
async def seeded_engine(engine, ssq):
    """Engine with 200 verified ssq drawings, one every two days up to yesterday."""
    await insert_draws(engine, synthetic_draws(ssq, 200), "ssq")
    return engine
