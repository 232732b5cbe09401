"""
OHLCV Data Validation Utilities

Centralized input validation for indicator calculations, so data quality
issues surface early instead of propagating NaN through detectors.
"""

from typing import Optional
import pandas as pd
import logging

logger = logging.getLogger(__name__)


class DataValidationError(ValueError):
    """Raised when OHLCV data fails validation checks."""


def validate_ohlcv(
    df: pd.DataFrame,
    require_volume: bool = True,
    min_rows: Optional[int] = None,
    raise_on_error: bool = True,
) -> dict:
    """
    Validate an OHLCV DataFrame before indicator calculation.

    Checks required columns, row count, NaN in price columns, positive
    prices, high >= low and non-negative volume.

    Returns:
        dict with 'valid', 'errors' and 'warnings'

    Raises:
        DataValidationError: If validation fails and raise_on_error=True
    """
    result = {"valid": True, "errors": [], "warnings": []}

    required_cols = ["high", "low", "close"]
    if require_volume:
        required_cols.append("volume")

    missing = [col for col in required_cols if col not in df.columns]
    if missing:
        result["errors"].append(f"Missing required columns: {missing}")
    else:
        if min_rows is not None and len(df) < min_rows:
            result["errors"].append(f"Insufficient rows: need {min_rows}, got {len(df)}")

        price_cols = ["high", "low", "close"]
        nan_counts = df[price_cols].isna().sum()
        if nan_counts.any():
            result["errors"].append(f"NaN values in price columns: {nan_counts[nan_counts > 0].to_dict()}")

        if (df[price_cols] <= 0).any().any():
            result["errors"].append("Non-positive prices found")

        if (df["high"] < df["low"]).any():
            bad = int((df["high"] < df["low"]).sum())
            result["errors"].append(f"{bad} candles with high < low")

        if require_volume and (df["volume"] < 0).any():
            result["errors"].append("Negative volume found")

        if require_volume and (df["volume"] == 0).all():
            result["warnings"].append("All volume values are zero")

    if result["errors"]:
        result["valid"] = False
        if raise_on_error:
            raise DataValidationError("; ".join(result["errors"]))

    for warning in result["warnings"]:
        logger.warning(warning)

    return result
