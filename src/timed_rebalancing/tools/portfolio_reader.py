"""
Rebalancing Tool: Portfolio Reader
Read a portfolio snapshot (positions with current/target allocations)
from a JSON document or a CSV/XLSX holdings export.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from timed_rebalancing.exceptions import PortfolioFormatError
from timed_rebalancing.schemas.portfolio_input import PortfolioPosition, PortfolioSnapshot

logger = logging.getLogger(__name__)

# Holdings exports have inconsistent headers
COLUMN_ALIASES: dict[str, list[str]] = {
    "ticker": ["Ticker", "Symbol", "Sym", "TICKER", "SYMBOL"],
    "security_name": ["Security Name", "Name", "Company Name", "Description", "Security"],
    "current_allocation_pct": ["Current Allocation %", "Current %", "Current Allocation", "Weight %"],
    "target_allocation_pct": ["Target Allocation %", "Target %", "Target Allocation", "Target"],
    "current_market_value": ["Market Value", "Value", "Current Value", "Value $"],
    "total_shares": ["Shares", "Quantity", "Qty", "Total Shares"],
    "unrealized_pnl_pct": ["Unrealized P&L %", "Gain %", "Total Gain %", "Unrealized Gain %"],
    "cost_basis": ["Cost Basis", "Total Cost", "Invested"],
}

TABULAR_SUFFIXES = {".csv", ".xlsx", ".xls"}


def _find_column(df: pd.DataFrame, target: str) -> Optional[str]:
    """Find a column in the DataFrame matching known aliases."""
    aliases = COLUMN_ALIASES.get(target, [target])
    for alias in [target] + aliases:
        if alias in df.columns:
            return alias
        for col in df.columns:
            if str(col).strip().lower() == alias.lower():
                return col
    return None


def _safe_float(val: Any) -> Optional[float]:
    """Convert a cell to float, stripping $ , % signs; None when blank or non-numeric."""
    if val is None:
        return None
    if isinstance(val, str):
        val = val.replace("$", "").replace(",", "").replace("%", "").strip()
        if not val:
            return None
    try:
        number = float(val)
    except (TypeError, ValueError):
        return None
    return None if pd.isna(number) else number


def read_portfolio_json(path: Path) -> PortfolioSnapshot:
    """
    Parse a JSON snapshot matching the PortfolioSnapshot schema.

    Raises:
        PortfolioFormatError: the file is not valid JSON or does not match
            the schema.
    """
    try:
        return PortfolioSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except PydanticValidationError as e:
        raise PortfolioFormatError(f"{path.name}: invalid portfolio snapshot: {e}") from e


def snapshot_from_frame(df: pd.DataFrame, cash_amount: float = 0.0) -> PortfolioSnapshot:
    """
    Build a snapshot from a holdings table.

    When the current allocation column is missing, it is derived from each
    row's market value over the table's total market value.

    Raises:
        PortfolioFormatError: no ticker column, or a row fails validation.
    """
    columns = {name: _find_column(df, name) for name in COLUMN_ALIASES}
    if columns["ticker"] is None:
        raise PortfolioFormatError(f"No ticker column found in {list(df.columns)}")

    rows: list[dict[str, Any]] = []
    for _, row in df.iterrows():
        ticker = row[columns["ticker"]]
        if ticker is None or pd.isna(ticker) or not str(ticker).strip():
            continue
        values: dict[str, Any] = {"ticker": str(ticker).strip()}
        if columns["security_name"] is not None and not pd.isna(row[columns["security_name"]]):
            values["security_name"] = str(row[columns["security_name"]]).strip()
        for name in (
            "current_allocation_pct", "target_allocation_pct", "current_market_value",
            "total_shares", "unrealized_pnl_pct", "cost_basis",
        ):
            col = columns[name]
            values[name] = _safe_float(row[col]) if col is not None else None
        rows.append(values)

    total_market_value = sum(r["current_market_value"] or 0.0 for r in rows)
    total_invested = sum(r["cost_basis"] or 0.0 for r in rows)
    derive_current = columns["current_allocation_pct"] is None and total_market_value > 0

    positions: list[PortfolioPosition] = []
    try:
        for r in rows:
            current_pct = r["current_allocation_pct"]
            if derive_current and r["current_market_value"] is not None:
                current_pct = round(r["current_market_value"] / total_market_value * 100.0, 4)
            positions.append(PortfolioPosition(
                ticker=r["ticker"],
                security_name=r.get("security_name", ""),
                current_allocation_pct=current_pct,
                target_allocation_pct=r["target_allocation_pct"],
                current_market_value=r["current_market_value"],
                total_shares=r["total_shares"] or 0.0,
                unrealized_pnl_pct=r["unrealized_pnl_pct"],
            ))
        return PortfolioSnapshot(
            positions=positions,
            total_market_value=total_market_value if total_market_value > 0 else None,
            total_invested=total_invested,
            cash_amount=cash_amount,
        )
    except PydanticValidationError as e:
        raise PortfolioFormatError(f"Invalid holdings row: {e}") from e


def read_portfolio(path: str | Path, cash_amount: float = 0.0) -> PortfolioSnapshot:
    """
    Read a portfolio snapshot from JSON, CSV or Excel.

    Args:
        path: Snapshot file
        cash_amount: Cash to attach to tabular snapshots (JSON carries its own)

    Returns:
        Validated PortfolioSnapshot

    Raises:
        PortfolioFormatError: missing file, unsupported extension, or
            content that fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise PortfolioFormatError(f"Portfolio file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        snapshot = read_portfolio_json(path)
    elif suffix in TABULAR_SUFFIXES:
        try:
            if suffix == ".csv":
                df = pd.read_csv(path)
            else:
                df = pd.read_excel(path, engine="openpyxl" if suffix == ".xlsx" else None)
        except (ValueError, OSError) as e:
            raise PortfolioFormatError(f"Failed to read {path.name}: {e}") from e
        snapshot = snapshot_from_frame(df, cash_amount=cash_amount)
    else:
        raise PortfolioFormatError(f"Unsupported portfolio format: {path.suffix}")

    logger.info(
        f"[Portfolio] {path.name}: {len(snapshot.positions)} positions, "
        f"total value ${snapshot.total_value:,.2f}, cash ${snapshot.cash_amount:,.2f}"
    )
    return snapshot
