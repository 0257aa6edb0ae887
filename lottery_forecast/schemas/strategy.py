"""Pydantic schemas for prediction strategies."""

from datetime import datetime

from pydantic import BaseModel


class StrategySchema(BaseModel):
    model_config = {"from_attributes": True}

    id: int
    name: str
    algorithm_type: str
    description: str | None = None
    parameters: dict
    hyperparameters: dict = {}
    feature_config: dict = {}
    accuracy_rate: float | None = None
    precision_rate: float | None = None
    recall_rate: float | None = None
    f1_score: float | None = None
    total_predictions: int = 0
    successful_predictions: int = 0
    total_trainings: int = 0
    last_training_date: datetime | None = None
    model_hash: str | None = None
    model_size_bytes: int | None = None
    is_active: bool = True
    is_public: bool = False
    is_system: bool = False
    version: str = "1.0.0"
    parent_strategy_id: int | None = None


class StrategyCreate(BaseModel):
    name: str
    algorithm_type: str
    description: str | None = None
    parameters: dict = {}
    hyperparameters: dict = {}
    feature_config: dict = {}
    is_public: bool = False
    is_system: bool = False
    parent_strategy_id: int | None = None
