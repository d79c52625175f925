"""
Strategy Parameters

The five tunable weights a strategy evaluation is produced with, and the
four named levels the dashboard exposes for each of them.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional


# ============================================================================
# LEVELS
# ============================================================================

LEVELS = ("Low", "Regular", "High", "Aggressive")
DEFAULT_LEVEL = 1  # Regular

# Weight per level, indexed like LEVELS
PARAMETER_LEVELS: Dict[str, tuple] = {
    "Volume": (0.10, 0.25, 0.50, 0.85),       # Market reach
    "Competition": (0.05, 0.10, 0.25, 0.45),  # Ranking ease
    "Transaction": (0.10, 0.25, 0.50, 0.85),  # Buyer intent
    "Niche": (0.08, 0.20, 0.40, 0.70),        # Niche specificity
    "CPC": (0.08, 0.20, 0.40, 0.70),          # Market value
}

# Payload key -> evaluation column
PARAMETER_COLUMNS: Dict[str, str] = {
    "Volume": "param_volume",
    "Competition": "param_competition",
    "Transaction": "param_transaction",
    "Niche": "param_niche",
    "CPC": "param_cpc",
}


def nearest_level(key: str, value: Optional[float]) -> int:
    """
    Index of the level closest to a stored weight.

    Unknown or missing values map to Regular.
    """
    if value is None or key not in PARAMETER_LEVELS:
        return DEFAULT_LEVEL

    best_index = DEFAULT_LEVEL
    best_diff = float("inf")
    for index, level_value in enumerate(PARAMETER_LEVELS[key]):
        diff = abs(level_value - value)
        if diff < best_diff:
            best_diff = diff
            best_index = index
    return best_index


@dataclass(frozen=True)
class StrategyParameters:
    """Weights sent to the worker and stored on each evaluation."""
    volume: float = PARAMETER_LEVELS["Volume"][DEFAULT_LEVEL]
    competition: float = PARAMETER_LEVELS["Competition"][DEFAULT_LEVEL]
    transaction: float = PARAMETER_LEVELS["Transaction"][DEFAULT_LEVEL]
    niche: float = PARAMETER_LEVELS["Niche"][DEFAULT_LEVEL]
    cpc: float = PARAMETER_LEVELS["CPC"][DEFAULT_LEVEL]

    @classmethod
    def from_levels(cls, selections: Mapping[str, int]) -> "StrategyParameters":
        """Build from level indices keyed like PARAMETER_LEVELS."""
        values = {}
        for key, levels in PARAMETER_LEVELS.items():
            index = selections.get(key, DEFAULT_LEVEL)
            if index is None or not 0 <= index < len(levels):
                index = DEFAULT_LEVEL
            values[key] = levels[index]
        return cls.from_payload(values)

    @classmethod
    def from_payload(cls, payload: Optional[Mapping[str, Any]]) -> "StrategyParameters":
        """Build from worker-style keys ("Volume", "CPC", ...). Missing keys keep defaults."""
        payload = payload or {}
        defaults = cls()
        return cls(
            volume=float(payload.get("Volume", defaults.volume)),
            competition=float(payload.get("Competition", defaults.competition)),
            transaction=float(payload.get("Transaction", defaults.transaction)),
            niche=float(payload.get("Niche", defaults.niche)),
            cpc=float(payload.get("CPC", defaults.cpc)),
        )

    @classmethod
    def from_evaluation(cls, evaluation) -> "StrategyParameters":
        """Read the param_* columns of an evaluation record; nulls keep defaults."""
        payload = {}
        for key, column in PARAMETER_COLUMNS.items():
            value = getattr(evaluation, column, None)
            if value is not None:
                payload[key] = value
        return cls.from_payload(payload)

    def to_payload(self) -> Dict[str, float]:
        return {
            "Volume": self.volume,
            "Competition": self.competition,
            "Transaction": self.transaction,
            "Niche": self.niche,
            "CPC": self.cpc,
        }

    def to_columns(self) -> Dict[str, float]:
        payload = self.to_payload()
        return {column: payload[key] for key, column in PARAMETER_COLUMNS.items()}

    def to_levels(self) -> Dict[str, int]:
        payload = self.to_payload()
        return {key: nearest_level(key, value) for key, value in payload.items()}
