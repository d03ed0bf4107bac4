from __future__ import annotations

from abc import ABC, abstractmethod

from streamstats.services.periods import TimeRange


class PotentialModel(ABC):
    """
    Market-facing inputs of the strength score that play data alone cannot
    supply. Every method returns a value in [0, 1].
    """

    @abstractmethod
    def genre_fit(self, artist_id: str, time_range: TimeRange) -> float:
        ...

    @abstractmethod
    def market_position(self, artist_id: str, time_range: TimeRange) -> float:
        ...

    @abstractmethod
    def demographic_appeal(self, artist_id: str, time_range: TimeRange) -> float:
        ...


class PlaceholderPotentialModel(PotentialModel):
    """Fixed values until a peer-comparison model exists."""

    def __init__(
        self,
        genre_fit: float = 0.8,
        market_position: float = 0.75,
        demographic_appeal: float = 0.7,
    ) -> None:
        self._genre_fit = genre_fit
        self._market_position = market_position
        self._demographic_appeal = demographic_appeal

    @classmethod
    def from_settings(cls, scoring: dict) -> "PlaceholderPotentialModel":
        values = scoring.get("potential_model") or {}
        return cls(
            genre_fit=float(values.get("genre_fit", 0.8)),
            market_position=float(values.get("market_position", 0.75)),
            demographic_appeal=float(values.get("demographic_appeal", 0.7)),
        )

    def genre_fit(self, artist_id: str, time_range: TimeRange) -> float:
        return self._genre_fit

    def market_position(self, artist_id: str, time_range: TimeRange) -> float:
        return self._market_position

    def demographic_appeal(self, artist_id: str, time_range: TimeRange) -> float:
        return self._demographic_appeal
