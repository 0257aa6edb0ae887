"""Algorithm registry. Maps algorithm kinds to their implementations."""

from collections.abc import Mapping
from dataclasses import dataclass

from loguru import logger
from pydantic import ValidationError

from lottery_forecast.errors import InvalidParameters, UnknownAlgorithm
from lottery_forecast.ml.models.base_model import AlgorithmParams, BaseForecastAlgorithm
from lottery_forecast.ml.models.ensemble import HybridEnsemble, HybridParams, equal_weights
from lottery_forecast.ml.models.neural_net import NeuralNetModel
from lottery_forecast.ml.models.sequence_model import SequenceModel
from lottery_forecast.ml.models.statistical_model import StatisticalModel
from lottery_forecast.ml.models.time_series import TimeSeriesModel
from lottery_forecast.ml.models.tree_ensemble import TreeEnsembleModel
from lottery_forecast.schemas.prediction import AlgorithmInfo


@dataclass(frozen=True)
class AlgorithmSpec:
    cls: type[BaseForecastAlgorithm]
    name: str
    description: str
    required_data_size: int
    accuracy_range: tuple[float, float]
    uses_torch: bool = False

    @property
    def params_model(self) -> type[AlgorithmParams]:
        return self.cls.params_model


ALGORITHMS: dict[str, AlgorithmSpec] = {
    "statistical": AlgorithmSpec(
        StatisticalModel, "Statistical analysis",
        "Weighted frequency, gap, hot/cold momentum and trend scores",
        required_data_size=30, accuracy_range=(0.55, 0.75),
    ),
    "random_forest": AlgorithmSpec(
        TreeEnsembleModel, "Random forest",
        "Multi-output random forest over windowed feature vectors",
        required_data_size=100, accuracy_range=(0.65, 0.85),
    ),
    "lstm": AlgorithmSpec(
        SequenceModel, "LSTM sequence model",
        "Recurrent network over per-draw encodings",
        required_data_size=1000, accuracy_range=(0.75, 0.92), uses_torch=True,
    ),
    "arima": AlgorithmSpec(
        TimeSeriesModel, "ARIMA time series",
        "Per-number ARIMA forecast of the rolling appearance rate",
        required_data_size=50, accuracy_range=(0.60, 0.80),
    ),
    "neural_network": AlgorithmSpec(
        NeuralNetModel, "Neural network",
        "Feed-forward network over standardized feature vectors",
        required_data_size=500, accuracy_range=(0.70, 0.90), uses_torch=True,
    ),
    "hybrid": AlgorithmSpec(
        HybridEnsemble, "Hybrid ensemble",
        "Weighted combination of member algorithms",
        required_data_size=1000, accuracy_range=(0.80, 0.95),
    ),
}


class AlgorithmRegistry:
    """Creates algorithm instances from a kind and a raw parameter mapping."""

    def __init__(self, algorithms: Mapping[str, AlgorithmSpec] = ALGORITHMS, device: str = "cpu"):
        self._algorithms = dict(algorithms)
        self.device = device

    def kinds(self) -> list[str]:
        return list(self._algorithms)

    def __contains__(self, kind: str) -> bool:
        return kind in self._algorithms

    def spec(self, kind: str) -> AlgorithmSpec:
        try:
            return self._algorithms[kind]
        except KeyError:
            raise UnknownAlgorithm(kind) from None

    def validate(self, kind: str, parameters: Mapping | None = None) -> AlgorithmParams:
        """Parse kind-specific parameters, raising InvalidParameters on failure."""
        spec = self.spec(kind)
        try:
            return spec.params_model.model_validate(dict(parameters or {}))
        except ValidationError as e:
            raise InvalidParameters(f"{kind}: {e.errors(include_url=False)}") from e

    def create(self, kind: str, parameters: Mapping | None = None) -> BaseForecastAlgorithm:
        spec = self.spec(kind)
        params = self.validate(kind, parameters)
        if kind == "hybrid":
            return self._create_hybrid(params)
        if spec.uses_torch:
            return spec.cls(params, device=self.device)
        return spec.cls(params)

    def create_ensemble(
        self,
        kinds: list[str],
        weights: list[float] | None = None,
        member_parameters: Mapping[str, Mapping] | None = None,
        optimize_weights: bool = False,
        voting: str = "weighted",
    ) -> HybridEnsemble:
        return self.create("hybrid", {
            "models": kinds,
            "weights": weights,
            "member_parameters": dict(member_parameters or {}),
            "optimize_weights": optimize_weights,
            "voting": voting,
        })

    def _create_hybrid(self, params: HybridParams) -> HybridEnsemble:
        kinds = list(params.models)
        if "hybrid" in kinds:
            raise InvalidParameters("hybrid ensembles cannot be nested")
        weights = list(params.weights) if params.weights is not None else equal_weights(len(kinds))
        if len(weights) != len(kinds):
            raise InvalidParameters(f"{len(kinds)} members but {len(weights)} weights")
        members = [
            (self.create(kind, params.member_parameters.get(kind)), weight)
            for kind, weight in zip(kinds, weights)
        ]
        logger.debug("Built hybrid ensemble {} with weights {}", kinds, weights)
        return HybridEnsemble(params, members)

    # ── metadata ──────────────────────────────────────────────────────

    def info(self, kind: str) -> AlgorithmInfo:
        spec = self.spec(kind)
        return AlgorithmInfo(
            kind=kind,
            name=spec.name,
            description=spec.description,
            required_data_size=spec.required_data_size,
            accuracy_range=spec.accuracy_range,
            supports_training=True,
        )

    def list_info(self) -> list[AlgorithmInfo]:
        return [self.info(kind) for kind in self._algorithms]

    def recommend_algorithms(self, data_size: int, target_accuracy: float | None = None) -> list[str]:
        """Kinds whose data requirement is met, best expected accuracy first."""
        candidates = [
            (kind, spec) for kind, spec in self._algorithms.items()
            if spec.required_data_size <= data_size
            and (target_accuracy is None or spec.accuracy_range[1] >= target_accuracy)
        ]
        candidates.sort(key=lambda item: (-sum(item[1].accuracy_range) / 2, item[0]))
        return [kind for kind, _ in candidates]

    def rankings(self) -> list[tuple[str, float]]:
        """(kind, midpoint of expected accuracy range), best first."""
        ranked = [(kind, sum(spec.accuracy_range) / 2) for kind, spec in self._algorithms.items()]
        return sorted(ranked, key=lambda item: (-item[1], item[0]))

    def rank_by_accuracy(self, accuracies: Mapping[str, float | None]) -> list[tuple[str, float]]:
        """(kind, trained accuracy) for registered kinds that have one, best first."""
        ranked = [
            (kind, float(accuracy)) for kind, accuracy in accuracies.items()
            if kind in self._algorithms and accuracy is not None
        ]
        return sorted(ranked, key=lambda item: (-item[1], item[0]))

    def best_by_accuracy(self, accuracies: Mapping[str, float | None]) -> str | None:
        ranked = self.rank_by_accuracy(accuracies)
        return ranked[0][0] if ranked else None
