"""Seed data: preset rule sets and one system strategy per algorithm kind."""

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lottery_forecast.db.crud import lottery_rule as rule_crud
from lottery_forecast.db.crud import strategy as strategy_crud
from lottery_forecast.db.models.strategy import PredictionStrategy
from lottery_forecast.rules import RuleRegistry

SYSTEM_STRATEGIES = [
    {
        "name": "Random Forest",
        "algorithm_type": "random_forest",
        "description": "Multi-output random forest over windowed draw features",
        "parameters": {
            "n_estimators": 100,
            "max_depth": 10,
            "min_samples_split": 2,
            "min_samples_leaf": 1,
            "random_state": 42,
        },
    },
    {
        "name": "LSTM",
        "algorithm_type": "lstm",
        "description": "Recurrent network over the sequence of recent draws",
        "parameters": {
            "hidden_size": 128,
            "num_layers": 2,
            "dropout": 0.2,
            "epochs": 100,
            "batch_size": 32,
            "learning_rate": 0.001,
            "sequence_length": 30,
        },
    },
    {
        "name": "Statistical Analysis",
        "algorithm_type": "statistical",
        "description": "Weighted frequency, gap, momentum and trend scoring",
        "parameters": {
            "window_size": 50,
            "weight_function": "linear",
            "smoothing_factor": 0.1,
        },
    },
    {
        "name": "ARIMA",
        "algorithm_type": "arima",
        "description": "Per-number ARIMA forecast of appearance rates",
        "parameters": {"p": 2, "d": 1, "q": 2, "trend": "n"},
    },
    {
        "name": "Neural Network",
        "algorithm_type": "neural_network",
        "description": "Feed-forward network over standardized features",
        "parameters": {
            "layers": [128, 64, 32],
            "activation": "relu",
            "dropout": 0.3,
            "epochs": 200,
            "batch_size": 64,
            "learning_rate": 0.001,
        },
    },
    {
        "name": "Hybrid Ensemble",
        "algorithm_type": "hybrid",
        "description": "Weighted combination of random forest, LSTM and neural network",
        "parameters": {
            "models": ["random_forest", "lstm", "neural_network"],
            "weights": [0.3, 0.4, 0.3],
        },
    },
]


async def seed_rules(session: AsyncSession, rules: RuleRegistry) -> int:
    inserted = 0
    for rule in rules.list_rules():
        if await rule_crud.insert_if_missing(session, rule):
            inserted += 1
    return inserted


async def load_custom_rules(session: AsyncSession, rules: RuleRegistry) -> int:
    """Register stored rule sets that the registry does not know yet."""
    added = 0
    for record in await rule_crud.list_rules(session):
        if record.identifier not in rules:
            rules.register(rule_crud.to_rule_set(record))
            added += 1
    return added


async def seed_strategies(session: AsyncSession, strategies: list[dict] = SYSTEM_STRATEGIES) -> int:
    inserted = 0
    for data in strategies:
        existing = await session.execute(
            select(PredictionStrategy.id).where(
                PredictionStrategy.algorithm_type == data["algorithm_type"],
                PredictionStrategy.is_system == True,  # noqa: E712
            )
        )
        if existing.first() is not None:
            continue
        await strategy_crud.create_strategy(session, {**data, "is_system": True, "is_public": True})
        inserted += 1
    return inserted


async def seed_database(session: AsyncSession, rules: RuleRegistry) -> None:
    """Idempotent; safe to run on every start."""
    n_rules = await seed_rules(session, rules)
    n_custom = await load_custom_rules(session, rules)
    n_strategies = await seed_strategies(session)
    await session.commit()
    logger.info(
        "Seeded {} rule sets and {} system strategies ({} stored rule sets registered)",
        n_rules, n_strategies, n_custom,
    )
