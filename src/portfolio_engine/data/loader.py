"""File-backed price loaders used by the command line."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..assets import Asset
from ..errors import PortfolioEngineError, UpstreamDataError
from .series import PriceSeries


class LoaderError(PortfolioEngineError):
    """Raised when the loader encounters malformed input."""


def _read_frame(path: Path) -> pd.DataFrame:
    frame = pd.read_csv(path)
    if frame.empty or frame.columns.size < 2:
        raise LoaderError(f"Price file {path} needs a date column and at least one ticker column")
    lower = [str(col).lower() for col in frame.columns]
    date_col = frame.columns[lower.index("date")] if "date" in lower else frame.columns[0]
    frame = frame.set_index(date_col)
    try:
        frame.index = pd.to_datetime(frame.index)
    except (TypeError, ValueError) as exc:
        raise LoaderError(f"Unparseable dates in {path}: {exc}") from exc
    if frame.index.has_duplicates:
        dup = frame.index[frame.index.duplicated()][0]
        raise LoaderError(f"Duplicate timestamp detected: {dup}")
    frame.columns = [str(col).strip() for col in frame.columns]
    return frame.sort_index().astype(float)


class CsvPriceSource:
    """Wide price file (date column plus one column per ticker)."""

    def __init__(self, path: Union[str, Path]) -> None:
        source = Path(path)
        if not source.exists():
            raise FileNotFoundError(f"Price file not found: {source}")
        self.path = source
        self._frame = _read_frame(source)

    @property
    def tickers(self) -> List[str]:
        return list(self._frame.columns)

    def get_price_history(self, ticker: str) -> PriceSeries:
        if ticker not in self._frame.columns:
            raise UpstreamDataError(ticker, f"Ticker '{ticker}' not present in {self.path.name}")
        column = self._frame[ticker].dropna()
        return PriceSeries(
            ticker=ticker,
            dates=tuple(ts.date() for ts in column.index),
            prices=column.to_numpy(dtype=float),
        )


def load_assets(path: Union[str, Path]) -> Dict[str, Asset]:
    """Read asset metadata (``ticker,name,country,sector,asset_class``) from CSV."""

    frame = pd.read_csv(Path(path), dtype=str).fillna("")
    frame.columns = [str(col).strip().lower() for col in frame.columns]
    if "ticker" not in frame.columns:
        raise LoaderError("Asset file must contain a 'ticker' column")
    assets: Dict[str, Asset] = {}
    for row in frame.to_dict(orient="records"):
        ticker = row["ticker"].strip()
        assets[ticker] = Asset(
            ticker=ticker,
            name=row.get("name", "").strip(),
            country=row.get("country", "").strip(),
            sector=row.get("sector", "").strip() or "Unknown",
            asset_class=(row.get("asset_class", "").strip().upper() or "EQUITY"),  # type: ignore[arg-type]
        )
    return assets


def load_weights(path: Union[str, Path], tickers: Optional[Sequence[str]] = None) -> Dict[str, float]:
    """Read ``ticker,weight`` rows; percent weights (sum near 100) are rescaled."""

    frame = pd.read_csv(Path(path))
    if frame.columns.size < 2:
        raise LoaderError("Weights file must contain ticker and weight columns")
    names = [str(v).strip() for v in frame.iloc[:, 0]]
    values = frame.iloc[:, 1].to_numpy(dtype=float)
    if tickers is not None:
        missing = sorted(set(names) - set(tickers))
        if missing:
            raise LoaderError(f"Weights reference unknown tickers: {', '.join(missing)}")
    total = float(np.sum(values))
    if total > 1.5:
        values = values / 100.0
    return {name: float(value) for name, value in zip(names, values)}


def weights_from_mapping(raw: Mapping[str, float]) -> Dict[str, float]:
    total = sum(float(v) for v in raw.values())
    scale = 100.0 if total > 1.5 else 1.0
    return {str(k): float(v) / scale for k, v in raw.items()}


__all__ = ["CsvPriceSource", "LoaderError", "load_assets", "load_weights", "weights_from_mapping"]
