"""CLI dashboard — prints backtest summaries and risk status to the console."""


def print_backtest_summary(result: dict) -> str:
    """Format and print the headline metrics of a backtest.

    Args:
        result: A ``BacktestResult.to_dict()`` payload.

    Returns:
        The formatted string (also printed to stdout).
    """
    metrics = result.get("metrics", {})
    pf = metrics.get("profit_factor")
    pf_str = f"{pf:.2f}" if isinstance(pf, (int, float)) else "N/A"
    source = "SYNTHETIC" if result.get("synthetic") else "exchange"

    lines = [
        "──────────────── divtrader Backtest ───────────────",
        f"  Pair:            {result.get('pair', 'N/A')} ({result.get('timeframe', '?')})",
        f"  Data:            {source}",
        f"  Trades:          {metrics.get('total_trades', 0)}"
        f" ({metrics.get('winning_trades', 0)}W / {metrics.get('losing_trades', 0)}L)",
        f"  Win Rate:        {metrics.get('win_rate', 0.0) * 100:.1f}%",
        f"  Total Return:    {metrics.get('total_return', 0.0) * 100:.2f}%",
        f"  Max Drawdown:    {metrics.get('max_drawdown', 0.0):.2f}%",
        f"  Profit Factor:   {pf_str}",
        f"  Sharpe:          {metrics.get('sharpe_ratio', 0.0):.2f}",
        f"  Final Balance:   ${metrics.get('final_balance', 0.0):,.2f}",
        "──────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output


def print_risk_status(status: dict) -> str:
    """Format and print a ``RiskGovernor.get_risk_status()`` dict."""
    balance = status.get("account_balance")
    balance_str = f"${balance:,.2f}" if balance is not None else "N/A"
    stop = "ACTIVE" if status.get("emergency_stop_triggered") else "off"
    reason = status.get("emergency_stop_reason")
    if reason:
        stop = f"{stop} ({reason})"

    lines = [
        "──────────────── divtrader Risk ───────────────────",
        f"  State:           {status.get('state', 'unknown')}",
        f"  Balance:         {balance_str}",
        f"  Daily P&L:       {status.get('daily_pnl', 0.0):,.2f}",
        f"  Weekly P&L:      {status.get('weekly_pnl', 0.0):,.2f}",
        f"  Open Positions:  {status.get('open_positions', 0)}",
        f"  Emergency Stop:  {stop}",
        "──────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
