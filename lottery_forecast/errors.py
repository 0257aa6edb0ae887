"""Error taxonomy for the forecasting engine."""


class LotteryForecastError(Exception):
    """Base class for all engine errors."""


class UnknownLotteryType(LotteryForecastError):
    def __init__(self, lottery_type: str):
        super().__init__(f"Unknown lottery type: {lottery_type}")
        self.lottery_type = lottery_type


class UnknownAlgorithm(LotteryForecastError):
    def __init__(self, kind: str):
        super().__init__(f"Unknown algorithm: {kind}")
        self.kind = kind


class UnknownStrategy(LotteryForecastError):
    pass


class UnknownTrainingJob(LotteryForecastError):
    pass


class UnknownDrawing(LotteryForecastError):
    pass


class InvalidParameters(LotteryForecastError):
    pass


class InvalidEnsembleWeights(InvalidParameters):
    pass


class InsufficientData(LotteryForecastError):
    """Not enough drawings in the requested window.

    Recoverable by widening the window or waiting for more drawings.
    """

    def __init__(self, message: str, available: int = 0, required: int = 0):
        super().__init__(message)
        self.available = available
        self.required = required


class PredictionFailed(LotteryForecastError):
    pass


class TrainingFailed(LotteryForecastError):
    def __init__(self, reason: str):
        super().__init__(f"Training failed: {reason}")
        self.reason = reason


class TrainingCancelled(LotteryForecastError):
    """Raised inside a training routine when its cancellation flag is set."""


class TrainingInProgress(LotteryForecastError):
    def __init__(self, strategy_id: int, job_id: int | None = None):
        super().__init__(f"Strategy {strategy_id} is already training (job {job_id})")
        self.strategy_id = strategy_id
        self.job_id = job_id


class ArtifactNotFound(LotteryForecastError):
    def __init__(self, content_hash: str):
        super().__init__(f"Artifact not found: {content_hash}")
        self.content_hash = content_hash


class CorruptArtifact(LotteryForecastError):
    def __init__(self, content_hash: str, actual_hash: str):
        super().__init__(f"Artifact {content_hash} failed verification (got {actual_hash})")
        self.content_hash = content_hash
        self.actual_hash = actual_hash


class StorageError(LotteryForecastError):
    """Opaque passthrough of a persistence failure."""
