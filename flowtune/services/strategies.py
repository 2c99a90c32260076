"""Difficulty adjustment strategies and strategy selection."""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .metrics import (
    AdjustmentPriority, AdjustmentRecommendation, DifficultyMetrics, clamp,
)


AdjustmentFunction = Callable[[float, float, float], float]


@dataclass
class StrategyConstraints:
    min_value: float = 0.0
    max_value: float = 1.0
    max_change_per_step: float = 0.1


@dataclass
class AdjustmentStrategy:
    """A named way of moving one or more difficulty knobs."""
    id: str
    name: str
    description: str
    target_metrics: Tuple[str, ...]
    adjustment_function: AdjustmentFunction
    constraints: StrategyConstraints = field(default_factory=StrategyConstraints)
    cooldown_period: float = 60.0  # seconds
    effective_range: Tuple[float, float] = (0.0, 1.0)

    def is_effective_for(self, skill_level: float) -> bool:
        low, high = self.effective_range
        return low <= skill_level <= high

    def apply(self, difficulty: DifficultyMetrics,
              recommendation: AdjustmentRecommendation) -> DifficultyMetrics:
        """New difficulty with this strategy's knobs moved and clamped.

        Knobs the recommendation does not target stay where they are.
        """
        step = min(recommendation.magnitude, self.constraints.max_change_per_step)
        updates = {}
        for knob in self.target_metrics:
            current = getattr(difficulty, knob)
            target = recommendation.target_metrics.get(knob, current)
            value = self.adjustment_function(current, target, step)
            updates[knob] = clamp(value, self.constraints.min_value, self.constraints.max_value)
        return difficulty.with_knobs(**updates)


def proportional_step(gain: float, limit: float) -> AdjustmentFunction:
    """Move a fraction of the way to the target, capped at `limit` per step."""
    def adjust(current: float, target: float, magnitude: float) -> float:
        change = (target - current) * gain
        bound = min(limit, magnitude)
        return current + clamp(change, -bound, bound)
    return adjust


def emergency_step(current: float, target: float, magnitude: float) -> float:
    """Fast move toward the target by 30% of the allowed step."""
    if target == current:
        return current
    delta = magnitude * 0.3
    if target < current:
        return max(0.1, current - delta)
    return current + delta


def default_strategies() -> List[AdjustmentStrategy]:
    """The built-in strategy registry in tie-break order."""
    return [
        AdjustmentStrategy(
            id='gradual_ai_skill',
            name='Gradual AI Skill Adjustment',
            description='Smoothly move AI skill toward player capability',
            target_metrics=('ai_skill_level',),
            adjustment_function=proportional_step(0.5, 0.1),
            constraints=StrategyConstraints(0.1, 1.0, 0.1),
            cooldown_period=45.0,
            effective_range=(0.0, 1.0),
        ),
        AdjustmentStrategy(
            id='aggressive_response',
            name='AI Aggressiveness Tuning',
            description='Adjust AI aggressiveness to the player risk tolerance',
            target_metrics=('ai_aggressiveness',),
            adjustment_function=proportional_step(0.7, 0.15),
            constraints=StrategyConstraints(0.2, 0.9, 0.15),
            cooldown_period=60.0,
            effective_range=(0.2, 0.8),
        ),
        AdjustmentStrategy(
            id='complexity_scaling',
            name='Game Complexity Scaling',
            description='Scale game complexity with player understanding',
            target_metrics=('game_complexity',),
            adjustment_function=proportional_step(0.4, 0.08),
            constraints=StrategyConstraints(0.3, 1.0, 0.08),
            cooldown_period=90.0,
            effective_range=(0.0, 1.0),
        ),
        AdjustmentStrategy(
            id='time_pressure_modulation',
            name='Time Pressure Modulation',
            description='Adjust time limits to decision speed',
            target_metrics=('time_pressure',),
            adjustment_function=proportional_step(0.6, 0.12),
            constraints=StrategyConstraints(0.1, 0.8, 0.12),
            cooldown_period=30.0,
            effective_range=(0.1, 0.9),
        ),
        AdjustmentStrategy(
            id='market_volatility_tuning',
            name='Market Volatility Tuning',
            description='Adjust market unpredictability to adaptation skill',
            target_metrics=('market_volatility',),
            adjustment_function=proportional_step(0.5, 0.1),
            constraints=StrategyConstraints(0.2, 0.8, 0.1),
            cooldown_period=120.0,
            effective_range=(0.3, 0.8),
        ),
        AdjustmentStrategy(
            id='resource_scarcity_adjustment',
            name='Resource Scarcity Adjustment',
            description='Adjust resource availability to optimization skill',
            target_metrics=('resource_scarcity',),
            adjustment_function=proportional_step(0.4, 0.08),
            constraints=StrategyConstraints(0.2, 0.9, 0.08),
            cooldown_period=150.0,
            effective_range=(0.2, 0.9),
        ),
        AdjustmentStrategy(
            id='emergency_difficulty_reduction',
            name='Emergency Difficulty Reduction',
            description='Rapidly rebalance when the gap is critical',
            target_metrics=('ai_aggressiveness', 'time_pressure', 'ai_skill_level'),
            adjustment_function=emergency_step,
            constraints=StrategyConstraints(0.1, 1.0, 0.3),
            cooldown_period=15.0,
            effective_range=(0.0, 1.0),
        ),
        AdjustmentStrategy(
            id='flow_state_optimization',
            name='Flow State Optimization',
            description='Fine-tune difficulty to hold the player in flow',
            target_metrics=('ai_skill_level', 'game_complexity'),
            adjustment_function=proportional_step(0.2, 0.05),
            constraints=StrategyConstraints(0.2, 0.9, 0.05),
            cooldown_period=45.0,
            effective_range=(0.3, 0.8),
        ),
    ]


EMERGENCY_STRATEGY_ID = 'emergency_difficulty_reduction'
FLOW_STRATEGY_ID = 'flow_state_optimization'

_PRIORITY_BONUS = {
    AdjustmentPriority.HIGH: 2,
    AdjustmentPriority.MEDIUM: 1,
}


def score_strategy(strategy: AdjustmentStrategy, recommendation: AdjustmentRecommendation) -> int:
    score = sum(1 for knob in strategy.target_metrics if knob in recommendation.target_metrics)
    return score + _PRIORITY_BONUS.get(recommendation.priority, 0)


def select_strategy(
    strategies: Sequence[AdjustmentStrategy],
    recommendation: AdjustmentRecommendation,
    skill_level: float,
    flow_indicator: float,
    gap: float,
    now: float = 0.0,
    last_used: Optional[Mapping[str, float]] = None,
) -> Optional[AdjustmentStrategy]:
    """Pick the strategy for a recommendation.

    Critical recommendations always get the emergency strategy. A player
    already near flow with a small gap gets flow optimisation. Otherwise
    strategies effective for the skill level and off cooldown are scored;
    ties go to the earliest in registry order.
    """
    by_id: Dict[str, AdjustmentStrategy] = {s.id: s for s in strategies}
    if recommendation.priority == AdjustmentPriority.CRITICAL and EMERGENCY_STRATEGY_ID in by_id:
        return by_id[EMERGENCY_STRATEGY_ID]
    if flow_indicator > 0.5 and abs(gap) < 0.3 and FLOW_STRATEGY_ID in by_id:
        return by_id[FLOW_STRATEGY_ID]

    last_used = last_used or {}
    best, best_score = None, -1
    for strategy in strategies:
        if not strategy.is_effective_for(skill_level):
            continue
        used_at = last_used.get(strategy.id)
        if used_at is not None and now - used_at < strategy.cooldown_period:
            continue
        score = score_strategy(strategy, recommendation)
        if score > best_score:
            best, best_score = strategy, score
    return best
