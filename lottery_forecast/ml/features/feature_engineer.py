"""Feature engineering over draw windows.

Every method is a pure function of the draws it is given, so identical
windows always produce bit-identical vectors.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import date

import numpy as np

from lottery_forecast.ml.features.window import Draw
from lottery_forecast.schemas.features import FeatureKind
from lottery_forecast.schemas.lottery import LotteryRuleSet

STATISTICAL_DIM = 8
PATTERN_DIM = 6
TEMPORAL_DIM = 7
AGGREGATE_DIM = 11


class FeatureEngineer:
    """Extract fixed-length numeric features from a window of draws."""

    def __init__(self, rule: LotteryRuleSet, include_special: bool = True):
        self.rule = rule
        self.start = rule.main_start
        self.size = rule.main_size
        self.end = rule.main_range[1]
        self.pick_count = rule.main_count
        self.include_special = include_special and rule.special_count > 0

    def dimension(self, kind: FeatureKind) -> int:
        if kind == FeatureKind.FREQUENCY:
            return self.size + (self.rule.special_size if self.include_special else 0)
        if kind == FeatureKind.TREND:
            return 2 * self.size
        if kind == FeatureKind.STATISTICAL:
            return STATISTICAL_DIM
        if kind == FeatureKind.PATTERN:
            return PATTERN_DIM
        return TEMPORAL_DIM

    # ── multi-hot encoding ───────────────────────────────────────────

    def build_multi_hot(self, numbers: Iterable[int]) -> np.ndarray:
        """Convert a draw to a multi-hot vector of shape (main range size,)."""
        vec = np.zeros(self.size, dtype=np.float64)
        for n in numbers:
            if self.start <= n <= self.end:
                vec[n - self.start] = 1.0
        return vec

    def build_special_multi_hot(self, specials: Iterable[int]) -> np.ndarray:
        vec = np.zeros(self.rule.special_size, dtype=np.float64)
        s_start = self.rule.special_start
        for n in specials:
            idx = n - s_start
            if 0 <= idx < len(vec):
                vec[idx] = 1.0
        return vec

    def hit_matrix(self, draws: Sequence[Draw]) -> np.ndarray:
        """(len(draws), main range size) matrix of appearances."""
        if not draws:
            return np.zeros((0, self.size), dtype=np.float64)
        return np.stack([self.build_multi_hot(d.numbers) for d in draws])

    def special_hit_matrix(self, draws: Sequence[Draw]) -> np.ndarray:
        if not draws:
            return np.zeros((0, self.rule.special_size), dtype=np.float64)
        return np.stack([self.build_special_multi_hot(d.specials) for d in draws])

    # ── frequency features ────────────────────────────────────────────

    def compute_frequency_features(self, draws: Sequence[Draw]) -> np.ndarray:
        """Occurrence rate of every number in range (main, then special)."""
        total = max(len(draws), 1)
        main = self.hit_matrix(draws).sum(axis=0) / total
        if not self.include_special:
            return main
        special = self.special_hit_matrix(draws).sum(axis=0) / total
        return np.concatenate([main, special])

    # ── trend / hot-cold features ────────────────────────────────────

    def compute_streaks(self, hits: np.ndarray) -> np.ndarray:
        """Signed run length per number counted back from the latest draw.

        Positive while a number keeps appearing, negative while it stays absent.
        """
        n = hits.shape[0]
        if n == 0:
            return np.zeros(hits.shape[1], dtype=np.float64)
        last = hits[-1]
        changed = hits[::-1] != last
        run = np.where(changed.any(axis=0), changed.argmax(axis=0), n).astype(np.float64)
        return np.where(last > 0, run, -run)

    def compute_trend_features(self, draws: Sequence[Draw]) -> np.ndarray:
        """[rolling frequency delta per number..., normalized signed streak per number...]"""
        hits = self.hit_matrix(draws)
        n = hits.shape[0]
        if n < 2:
            return np.zeros(2 * self.size, dtype=np.float64)
        half = n // 2
        delta = hits[half:].mean(axis=0) - hits[:half].mean(axis=0)
        streak = self.compute_streaks(hits) / n
        return np.concatenate([delta, streak])

    def compute_hot_cold_features(
        self, draws: Sequence[Draw], hot_window: int = 10, cold_window: int = 50
    ) -> np.ndarray:
        """For each number: [is_hot, is_cold, streak_length].

        hot = appeared >= 2x expected in hot_window.
        cold = appeared <= 0.5x expected in cold_window.

        Returns shape: (main range size, 3)
        """
        expected_rate = self.pick_count / self.size
        hits = self.hit_matrix(draws)
        if hits.shape[0] == 0:
            return np.zeros((self.size, 3), dtype=np.float64)
        hot_freq = hits[-hot_window:].mean(axis=0)
        cold_freq = hits[-cold_window:].mean(axis=0)
        is_hot = (hot_freq >= expected_rate * 2).astype(np.float64)
        is_cold = (cold_freq <= expected_rate * 0.5).astype(np.float64)
        streak = np.abs(self.compute_streaks(hits))
        return np.stack([is_hot, is_cold, streak], axis=1)

    # ── AC value (arithmetic complexity) ─────────────────────────────

    def compute_ac_value(self, numbers: Sequence[int]) -> int:
        """Number of distinct pairwise differences minus (n - 1)."""
        sorted_nums = sorted(set(numbers))
        n = len(sorted_nums)
        if n < 2:
            return 0
        diffs = {
            sorted_nums[j] - sorted_nums[i]
            for i in range(n)
            for j in range(i + 1, n)
        }
        return len(diffs) - (n - 1)

    # ── aggregate features for a single draw ─────────────────────────

    def compute_aggregate_features(self, numbers: Sequence[int]) -> np.ndarray:
        """Compute aggregate features for a single draw.

        Returns: [sum, odd_count, even_count, span, consecutive_pairs,
                  low_count, mid_count, high_count, ac_value,
                  max_consecutive_run, tail_diversity]
        (11 dims)
        """
        sorted_nums = sorted(numbers)
        n = len(sorted_nums)

        total_sum = sum(sorted_nums)
        odd_count = sum(1 for x in sorted_nums if x % 2 == 1)
        span = sorted_nums[-1] - sorted_nums[0] if n > 0 else 0

        consecutive = 0
        max_run = 1 if n else 0
        current_run = 1
        for i in range(n - 1):
            if sorted_nums[i + 1] - sorted_nums[i] == 1:
                consecutive += 1
                current_run += 1
                max_run = max(max_run, current_run)
            else:
                current_run = 1

        third = self.size / 3
        low = sum(1 for x in sorted_nums if x - self.start < third)
        high = sum(1 for x in sorted_nums if x - self.start >= 2 * third)
        mid = n - low - high

        return np.array(
            [total_sum, odd_count, n - odd_count, span, consecutive,
             low, mid, high, self.compute_ac_value(sorted_nums),
             max_run, len(set(x % 10 for x in sorted_nums))],
            dtype=np.float64,
        )

    # ── statistical features ─────────────────────────────────────────

    def compute_statistical_features(self, draws: Sequence[Draw]) -> np.ndarray:
        """[sum_mean, sum_std, span_mean, span_std, sum_trend, odd_ratio, low_ratio, ac_mean]"""
        if not draws:
            return np.zeros(STATISTICAL_DIM, dtype=np.float64)
        agg = np.stack([self.compute_aggregate_features(d.numbers) for d in draws])
        sums = agg[:, 0]
        spans = agg[:, 3]
        count = max(self.pick_count, 1)

        # Least-squares slope of the per-draw sum
        if len(sums) > 1:
            x = np.arange(len(sums), dtype=np.float64)
            slope = float(np.polyfit(x, sums, 1)[0])
        else:
            slope = 0.0

        return np.array([
            sums.mean(), sums.std(),
            spans.mean(), spans.std(),
            slope,
            agg[:, 1].mean() / count,
            agg[:, 5].mean() / count,
            agg[:, 8].mean(),
        ], dtype=np.float64)

    # ── pattern features ─────────────────────────────────────────────

    def compute_pattern_features(self, draws: Sequence[Draw]) -> np.ndarray:
        """[consecutive_pairs, max_run, repeats_from_previous, adjacent_to_previous,
        tail_diversity, repeated_digit_rate], averaged over the window."""
        if not draws:
            return np.zeros(PATTERN_DIM, dtype=np.float64)
        consecutive, max_runs, tails, dup = [], [], [], []
        repeats, adjacent = [], []
        previous: set[int] | None = None
        for d in draws:
            agg = self.compute_aggregate_features(d.numbers)
            consecutive.append(agg[4])
            max_runs.append(agg[9])
            tails.append(agg[10])
            dup.append(1.0 if len(set(d.numbers)) < len(d.numbers) else 0.0)
            current = set(d.numbers)
            if previous is not None:
                repeats.append(len(current & previous))
                neighbours = {p + 1 for p in previous} | {p - 1 for p in previous}
                adjacent.append(len((current - previous) & neighbours))
            previous = current
        return np.array([
            np.mean(consecutive),
            np.mean(max_runs),
            np.mean(repeats) if repeats else 0.0,
            np.mean(adjacent) if adjacent else 0.0,
            np.mean(tails),
            np.mean(dup),
        ], dtype=np.float64)

    # ── temporal features ────────────────────────────────────────────

    def compute_time_features(self, day_of_week: int, month: int) -> np.ndarray:
        """Sin/cos encoding: [dow_sin, dow_cos, month_sin, month_cos]"""
        return np.array([
            math.sin(2 * math.pi * day_of_week / 7),
            math.cos(2 * math.pi * day_of_week / 7),
            math.sin(2 * math.pi * (month - 1) / 12),
            math.cos(2 * math.pi * (month - 1) / 12),
        ], dtype=np.float64)

    def compute_temporal_features(self, draws: Sequence[Draw], as_of: date) -> np.ndarray:
        """Calendar encoding of the target date plus draw cadence:
        [dow_sin, dow_cos, month_sin, month_cos, mean_interval, interval_std, days_since_last]
        """
        cyclic = self.compute_time_features(as_of.weekday(), as_of.month)
        if len(draws) > 1:
            ordinals = np.array([d.draw_date.toordinal() for d in draws], dtype=np.float64)
            intervals = np.diff(ordinals)
            mean_interval, interval_std = intervals.mean(), intervals.std()
        else:
            mean_interval, interval_std = 0.0, 0.0
        since_last = float((as_of - draws[-1].draw_date).days) if draws else 0.0
        return np.concatenate([cyclic, [mean_interval, interval_std, since_last]])

    # ── combined ──────────────────────────────────────────────────────

    def compute(self, kind: FeatureKind, draws: Sequence[Draw], as_of: date) -> np.ndarray:
        if kind == FeatureKind.FREQUENCY:
            return self.compute_frequency_features(draws)
        if kind == FeatureKind.TREND:
            return self.compute_trend_features(draws)
        if kind == FeatureKind.STATISTICAL:
            return self.compute_statistical_features(draws)
        if kind == FeatureKind.PATTERN:
            return self.compute_pattern_features(draws)
        return self.compute_temporal_features(draws, as_of)

    def window_vector(
        self, draws: Sequence[Draw], kinds: Iterable[FeatureKind], as_of: date
    ) -> np.ndarray:
        """Concatenated features for the given kinds, in a stable kind order."""
        parts = [self.compute(k, draws, as_of) for k in sorted(set(kinds))]
        if not parts:
            return np.zeros(0, dtype=np.float64)
        return np.concatenate(parts)

    def build_target(self, draw: Draw) -> np.ndarray:
        """Multi-hot target: main range followed by special range."""
        return np.concatenate([self.build_multi_hot(draw.numbers), self.build_special_multi_hot(draw.specials)])

    def build_supervised_samples(
        self,
        history: Sequence[Draw],
        first_target: int,
        lookback: int,
        kinds: Iterable[FeatureKind],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Samples predicting history[t] from history[t - lookback:t], for t >= first_target.

        Returns (X, Y) with X of shape (n, feature dim) and Y multi-hot targets.
        """
        kinds = sorted(set(kinds))
        X, Y = [], []
        for t in range(max(first_target, lookback, 1), len(history)):
            context = history[t - lookback:t]
            X.append(self.window_vector(context, kinds, history[t].draw_date))
            Y.append(self.build_target(history[t]))
        if not X:
            return np.zeros((0, 0)), np.zeros((0, self.size + self.rule.special_size))
        return np.stack(X), np.stack(Y)

    def build_sequence_features(self, draws: Sequence[Draw], seq_len: int) -> np.ndarray:
        """Per-draw [multi-hot, special multi-hot, aggregate] rows for sequence models.

        Pads with zero rows at the front when fewer than seq_len draws exist.
        Returns shape: (seq_len, size + special_size + 11)
        """
        width = self.size + self.rule.special_size + AGGREGATE_DIM
        rows = [
            np.concatenate([
                self.build_multi_hot(d.numbers),
                self.build_special_multi_hot(d.specials),
                self._scaled_aggregate(d.numbers),
            ])
            for d in draws[-seq_len:]
        ]
        pad = [np.zeros(width, dtype=np.float64)] * (seq_len - len(rows))
        return np.stack(pad + rows) if (pad or rows) else np.zeros((seq_len, width))

    def _scaled_aggregate(self, numbers: Sequence[int]) -> np.ndarray:
        agg = self.compute_aggregate_features(numbers)
        scale = np.array(
            [self.end * self.pick_count, self.pick_count, self.pick_count, self.size,
             self.pick_count, self.pick_count, self.pick_count, self.pick_count,
             max(self.size, 1), self.pick_count, 10],
            dtype=np.float64,
        )
        return agg / np.maximum(scale, 1.0)


def validate_vector(vector: np.ndarray) -> bool:
    """True when every entry is finite."""
    return bool(np.all(np.isfinite(vector)))
