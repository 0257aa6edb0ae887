"""ORM models package."""

from lottery_forecast.db.models.lottery_rule import LotteryRuleRecord
from lottery_forecast.db.models.drawing import LotteryDrawing
from lottery_forecast.db.models.strategy import PredictionStrategy
from lottery_forecast.db.models.prediction import PredictionRecord
from lottery_forecast.db.models.feature import AnalysisFeature
from lottery_forecast.db.models.training_record import ModelTrainingRecord

__all__ = [
    "LotteryRuleRecord",
    "LotteryDrawing",
    "PredictionStrategy",
    "PredictionRecord",
    "AnalysisFeature",
    "ModelTrainingRecord",
]
