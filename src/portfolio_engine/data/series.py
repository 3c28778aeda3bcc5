"""Price series validation and aligned log-return panels."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..errors import InsufficientAssetsError, InsufficientHistoryError, UpstreamDataError


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, np.datetime64):
        return pd.Timestamp(value).date()
    if isinstance(value, pd.Timestamp):
        return value.date()
    return pd.Timestamp(str(value)).date()


@dataclass(frozen=True)
class PriceSeries:
    """Daily closing prices for one ticker in ascending date order.

    ``fallback`` is set when the history was not served live (stale cache or a
    backup source) and says how it was obtained.
    """

    ticker: str
    dates: Tuple[date, ...]
    prices: np.ndarray
    fallback: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        try:
            dates = tuple(_coerce_date(d) for d in self.dates)
        except (TypeError, ValueError) as exc:
            raise UpstreamDataError(self.ticker, f"Unparseable date in history for '{self.ticker}'") from exc
        prices = np.asarray(self.prices, dtype=float).reshape(-1)
        if len(dates) != prices.size:
            raise UpstreamDataError(
                self.ticker,
                f"History for '{self.ticker}' has {len(dates)} dates but {prices.size} prices",
            )
        for prev, cur in zip(dates, dates[1:]):
            if cur <= prev:
                raise UpstreamDataError(
                    self.ticker,
                    f"Dates for '{self.ticker}' must be strictly ascending ({prev} followed by {cur})",
                )
        if prices.size and (not np.all(np.isfinite(prices)) or np.any(prices <= 0.0)):
            raise UpstreamDataError(
                self.ticker, f"Prices for '{self.ticker}' must be finite and strictly positive"
            )
        prices.setflags(write=False)
        object.__setattr__(self, "dates", dates)
        object.__setattr__(self, "prices", prices)

    def __len__(self) -> int:
        return int(self.prices.size)

    @classmethod
    def from_pairs(cls, ticker: str, pairs: Iterable[Tuple[Any, float]]) -> "PriceSeries":
        rows = list(pairs)
        return cls(
            ticker=ticker,
            dates=tuple(row[0] for row in rows),
            prices=np.asarray([row[1] for row in rows], dtype=float),
        )

    def to_series(self) -> pd.Series:
        index = pd.DatetimeIndex([pd.Timestamp(d) for d in self.dates], name="date")
        return pd.Series(np.asarray(self.prices), index=index, name=self.ticker)


@dataclass(frozen=True)
class ReturnPanel:
    """Aligned daily log returns, one column per ticker."""

    tickers: Tuple[str, ...]
    dates: Tuple[date, ...]
    matrix: np.ndarray
    excluded: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        matrix = np.asarray(self.matrix, dtype=float)
        if matrix.ndim != 2 or matrix.shape[1] != len(self.tickers):
            raise ValueError("Return matrix must be (observations, tickers)")
        if len(self.dates) != matrix.shape[0]:
            raise ValueError("Return dates must match the number of observations")
        matrix.setflags(write=False)
        object.__setattr__(self, "tickers", tuple(self.tickers))
        object.__setattr__(self, "dates", tuple(self.dates))
        object.__setattr__(self, "matrix", matrix)
        object.__setattr__(self, "excluded", dict(self.excluded))

    @property
    def observations(self) -> int:
        return int(self.matrix.shape[0])

    def column(self, ticker: str) -> np.ndarray:
        return self.matrix[:, self.tickers.index(ticker)]

    def subset(self, tickers: Sequence[str]) -> "ReturnPanel":
        idx = [self.tickers.index(t) for t in tickers]
        return ReturnPanel(
            tickers=tuple(tickers),
            dates=self.dates,
            matrix=self.matrix[:, idx],
            excluded=self.excluded,
        )


def log_returns(series: PriceSeries) -> np.ndarray:
    prices = np.asarray(series.prices, dtype=float)
    if prices.size < 2:
        return np.empty(0, dtype=float)
    return np.log(prices[1:] / prices[:-1])


def build_return_panel(
    series_list: Sequence[PriceSeries],
    min_observations: int = 252,
    drop_insufficient: bool = False,
) -> ReturnPanel:
    """Turn price histories into an aligned log-return panel.

    Every series needs at least ``min_observations`` returns. Short series raise
    :class:`InsufficientHistoryError` unless ``drop_insufficient`` is set, in
    which case they are listed in :attr:`ReturnPanel.excluded`. Survivors are
    aligned to the shortest length by discarding their oldest observations.
    """

    if not series_list:
        raise InsufficientAssetsError(0, required=1, message="No price series supplied")
    seen: Dict[str, int] = {}
    kept: List[Tuple[PriceSeries, np.ndarray]] = []
    excluded: Dict[str, str] = {}
    for series in series_list:
        if series.ticker in seen:
            raise ValueError(f"Duplicate price series for '{series.ticker}'")
        seen[series.ticker] = 1
        rets = log_returns(series)
        if rets.size < min_observations:
            if not drop_insufficient:
                raise InsufficientHistoryError(series.ticker, rets.size, min_observations)
            excluded[series.ticker] = (
                f"insufficient history: {rets.size} returns, {min_observations} required"
            )
            continue
        kept.append((series, rets))
    if not kept:
        raise InsufficientAssetsError(0, required=1, message="No ticker has sufficient history")

    length = min(rets.size for _, rets in kept)
    shortest = min(kept, key=lambda item: item[1].size)[0]
    dates = shortest.dates[len(shortest.dates) - length :]
    matrix = np.column_stack([rets[rets.size - length :] for _, rets in kept])
    return ReturnPanel(
        tickers=tuple(series.ticker for series, _ in kept),
        dates=tuple(dates),
        matrix=matrix,
        excluded=excluded,
    )


def align_prices(
    series_list: Sequence[PriceSeries],
    start: Optional[date] = None,
) -> pd.DataFrame:
    """Inner-join closing prices on date; optionally keep only ``date >= start``."""

    if not series_list:
        return pd.DataFrame()
    frame = pd.concat([series.to_series() for series in series_list], axis=1, join="inner")
    frame = frame.sort_index()
    if start is not None:
        frame = frame.loc[frame.index >= pd.Timestamp(start)]
    return frame


__all__ = [
    "PriceSeries",
    "ReturnPanel",
    "align_prices",
    "build_return_panel",
    "log_returns",
]
