"""CSV metrics sink using Polars."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import polars as pl

LOG_DIR = Path("logs")


def _align(prev: pl.DataFrame, new: pl.DataFrame) -> pl.DataFrame:
    """Concatenate frames whose columns or dtypes differ."""
    cols = list(prev.columns) + [c for c in new.columns if c not in prev.columns]
    dtypes: Dict[str, Any] = {}
    for c in cols:
        a = prev.schema.get(c)
        b = new.schema.get(c)
        if a is None or b is None:
            dtypes[c] = a if b is None else b
        elif a == b:
            dtypes[c] = a
        elif a == pl.Utf8 or b == pl.Utf8:
            dtypes[c] = pl.Utf8
        else:
            dtypes[c] = pl.Float64

    def _conform(frame: pl.DataFrame) -> pl.DataFrame:
        for c in cols:
            if c not in frame.columns:
                frame = frame.with_columns(pl.lit(None, dtype=dtypes[c]).alias(c))
            elif frame.schema[c] != dtypes[c]:
                frame = frame.with_columns(pl.col(c).cast(dtypes[c]))
        return frame.select(cols)

    return pl.concat([_conform(prev), _conform(new)], how="vertical")


def log_records(name: str, records: List[Dict[str, Any]], log_dir: Path | None = None) -> Path:
    """Append rows to ``<log_dir>/<name>.csv`` and return its path."""
    assert isinstance(name, str) and len(name) > 0, "Invalid log name"
    assert isinstance(records, list), "records must be a list"
    out_dir = LOG_DIR if log_dir is None else Path(log_dir)
    out = out_dir / f"{name}.csv"
    if not records:
        return out
    out_dir.mkdir(parents=True, exist_ok=True)
    df = pl.DataFrame(records)
    if out.exists():
        prev = pl.read_csv(out)
        try:
            df = pl.concat([prev, df], how="vertical_relaxed")
        except pl.exceptions.PolarsError:
            df = _align(prev, df)
    df.write_csv(out)
    return out


def log_record(name: str, record: Dict[str, Any], log_dir: Path | None = None) -> Path:
    """Append a single row."""
    return log_records(name, [record], log_dir=log_dir)
