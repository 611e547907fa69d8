"""Run timed rebalancing for one portfolio and write output to JSON + Excel.

Usage:
    python run_recommendations.py portfolio.json                     # live yfinance prices
    python run_recommendations.py holdings.csv --cash 2500           # tabular export + cash
    python run_recommendations.py portfolio.json --prices prices.json   # offline prices
    python run_recommendations.py portfolio.json --invest 5000 --max-actions 5 --advisor
"""

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

from dotenv import load_dotenv
load_dotenv()

import pandas as pd
from openpyxl.styles import Font, PatternFill

from timed_rebalancing.agents.rebalancing_recommender import (
    build_recommendation_request,
    run_rebalancing_pipeline,
)
from timed_rebalancing.config.settings import RebalancingSettings
from timed_rebalancing.exceptions import RebalancingException
from timed_rebalancing.schemas.rebalancing_output import TimedRebalancingResponse
from timed_rebalancing.tools.market_data import (
    StaticPriceProvider,
    YahooConnectionManager,
    YFinancePriceProvider,
)
from timed_rebalancing.tools.portfolio_reader import read_portfolio
from timed_rebalancing.tools.token_tracker import tracker as token_tracker


# ---------------------------------------------------------------------------
# CLI Argument Parsing
# ---------------------------------------------------------------------------

def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Timed Rebalancing: gap + 1Y percentile buy/sell recommendations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  python run_recommendations.py portfolio.json
  python run_recommendations.py holdings.xlsx --cash 1000 --output results
  python run_recommendations.py portfolio.json --prices prices.json --max-actions 5
""",
    )
    parser.add_argument("portfolio", help="Portfolio snapshot (.json, .csv or .xlsx)")
    parser.add_argument(
        "--prices", default=None,
        help='Offline prices JSON: {"current": {TICKER: price}, "history": {TICKER: [closes]}}',
    )
    parser.add_argument("--output", default="output", help="Output directory (default: output)")
    parser.add_argument("--user", default="local", help="User id recorded in the request")
    parser.add_argument("--cash", type=float, default=0.0, help="Cash for tabular snapshots")
    parser.add_argument("--invest", type=float, default=None, help="New money to deploy")
    parser.add_argument("--max-actions", type=int, default=None, help="Cap on actions per side")
    parser.add_argument("--max-securities", type=int, default=None, help="Cap on tickers timed")
    parser.add_argument(
        "--advisor", action="store_true", default=False,
        help="Ask the advisor to refine actions (needs REBALANCING_ADVISOR_ENABLED + ANTHROPIC_API_KEY)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args()


# ---------------------------------------------------------------------------
# Writers
# ---------------------------------------------------------------------------

def _load_static_prices(path: Path) -> StaticPriceProvider:
    data = json.loads(path.read_text(encoding="utf-8"))
    return StaticPriceProvider(
        current_prices=data.get("current", {}),
        history=data.get("history", {}),
    )


def _action_rows(actions) -> list[dict]:
    return [
        {
            "Priority": a.priority,
            "Ticker": a.ticker,
            "Name": a.security_name,
            "Amount": a.amount,
            "Current %": a.current_allocation_pct,
            "Target %": a.target_allocation_pct,
            "Deviation (pp)": a.deviation,
            "Price": a.current_price,
            "1Y Percentile": a.timing_percentile,
            "Unrealized P&L %": a.unrealized_pnl_pct,
            "Confidence": a.confidence,
            "Reason": a.reason,
        }
        for a in actions
    ]


def _write_recommendations_excel(response: TimedRebalancingResponse, out_path: Path) -> Path:
    """Write the recommendation set to an Excel workbook."""
    today = date.today().isoformat()
    filepath = out_path / f"timed_rebalancing_{today}.xlsx"

    summary_rows = [
        {"Field": "Generated At", "Value": response.generated_at.isoformat()},
        {"Field": "Total Portfolio Value", "Value": f"${response.total_portfolio_value:,.2f}"},
        {"Field": "Cash Available", "Value": f"${response.cash_available:,.2f}"},
        {"Field": "", "Value": ""},
        {"Field": "--- Money Flow ---", "Value": ""},
        {"Field": "Total Sells", "Value": f"${response.total_sell_amount:,.2f}"},
        {"Field": "Total Buys", "Value": f"${response.total_buy_amount:,.2f}"},
        {"Field": "Net Cash Flow", "Value": f"${response.net_cash_flow:,.2f}"},
        {"Field": "", "Value": ""},
        {"Field": "--- Timing ---", "Value": ""},
        {"Field": "Sell Percentile >=", "Value": response.sell_percentile_threshold},
        {"Field": "Buy Percentile <=", "Value": response.buy_percentile_threshold},
        {"Field": "", "Value": ""},
        {"Field": "Advisor Applied", "Value": "Yes" if response.advisor_applied else "No"},
        {"Field": "Advisor Summary", "Value": response.advisor_summary or "N/A"},
    ]
    df_summary = pd.DataFrame(summary_rows)
    df_sells = pd.DataFrame(_action_rows(response.sells))
    df_buys = pd.DataFrame(_action_rows(response.buys))

    header_font = Font(bold=True)
    sell_fill = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
    buy_fill = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")

    with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
        df_summary.to_excel(writer, sheet_name="Summary", index=False)
        ws = writer.sheets["Summary"]
        ws.column_dimensions["A"].width = 25
        ws.column_dimensions["B"].width = 60

        for name, df, fill in (("Sells", df_sells, sell_fill), ("Buys", df_buys, buy_fill)):
            if df.empty:
                continue
            df.to_excel(writer, sheet_name=name, index=False)
            ws = writer.sheets[name]
            for cell in ws[1]:
                cell.font = header_font
                cell.fill = fill

    return filepath


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    out_path = Path(args.output)
    out_path.mkdir(exist_ok=True)

    try:
        settings = RebalancingSettings.from_env()
        request = build_recommendation_request(
            user_id=args.user,
            investment_amount=args.invest,
            max_securities=args.max_securities,
            max_actions=args.max_actions,
            use_advisor=args.advisor,
        )
        snapshot = read_portfolio(args.portfolio, cash_amount=args.cash)

        if args.prices:
            provider = _load_static_prices(Path(args.prices))
            response = run_rebalancing_pipeline(snapshot, request, settings, provider)
        else:
            with YahooConnectionManager() as connection:
                provider = YFinancePriceProvider(connection)
                response = run_rebalancing_pipeline(snapshot, request, settings, provider)
    except RebalancingException as e:
        print(f"\nERROR: {e}")
        return 1

    json_file = out_path / f"timed_rebalancing_{date.today().isoformat()}.json"
    json_file.write_text(response.model_dump_json(indent=2), encoding="utf-8")
    excel_file = _write_recommendations_excel(response, out_path)

    print(f"\n[Rebalancing] {len(response.sells)} sells (${response.total_sell_amount:,.2f}), "
          f"{len(response.buys)} buys (${response.total_buy_amount:,.2f}), "
          f"net ${response.net_cash_flow:,.2f}")
    print(f"[Rebalancing] Saved: {json_file}")
    print(f"[Rebalancing] Saved: {excel_file}")

    if token_tracker.has_records:
        summary = token_tracker.get_summary()
        print(f"\n[Tokens] {summary['num_calls']} LLM calls, "
              f"{summary['total_tokens']:,} tokens, "
              f"${summary['estimated_cost_usd']:.4f}")

    return 0


if __name__ == "__main__":
    sys.exit(main(parse_args()))
