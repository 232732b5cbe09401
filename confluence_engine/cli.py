"""
Confluence Engine CLI - Command-line interface.
"""
import json
import logging
import sys
import time

import typer
from loguru import logger as loguru_logger

from confluence_engine import __version__

app = typer.Typer(help="📡 Confluence Engine - Adaptive multi-timeframe signal engine")


def configure_logging(level: str = "INFO"):
    """Route stdlib logging and loguru to stderr at the same level."""
    level = level.upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )
    loguru_logger.remove()
    loguru_logger.add(sys.stderr, level=level)


@app.command()
def run(
    once: bool = typer.Option(False, "--once", help="Run a single cycle immediately and exit"),
    mock: bool = typer.Option(False, "--mock", help="Use deterministic synthetic market data"),
    log_level: str = typer.Option("INFO", help="Log level"),
):
    """
    🚀 Start the engine.

    Configuration comes from CE_* environment variables (see EngineConfig).
    Telegram delivery is enabled when CE_TELEGRAM_BOT_TOKEN and
    CE_TELEGRAM_CHAT_ID are set.
    """
    configure_logging(log_level)

    from confluence_engine.bot.notifications.telegram import TelegramNotifier
    from confluence_engine.data.adapters.mocks import MockMarketData, NeutralFundamentals
    from confluence_engine.data.signal_store import SQLiteSignalStore
    from confluence_engine.engine.scheduler import SchedulerState
    from confluence_engine.engine.signal_engine import SignalEngine
    from confluence_engine.shared.config.defaults import EngineConfig

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        typer.echo(f"❌ Invalid configuration: {e}")
        raise typer.Exit(code=2)

    if mock:
        market_data = MockMarketData(volume_timeframe=config.pressure_timeframe)
    else:
        from confluence_engine.data.adapters.binance import BinanceMarketData
        market_data = BinanceMarketData(volume_timeframe=config.pressure_timeframe)

    notifier = None
    if config.telegram_bot_token and config.telegram_chat_id:
        notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id)
    else:
        typer.echo("ℹ️  Telegram credentials not set, notifications disabled")

    engine = SignalEngine(
        config,
        market_data,
        NeutralFundamentals(),
        SQLiteSignalStore(config.db_path),
        notifier=notifier,
    )

    typer.echo(f"📡 Watching {len(config.watchlist)} symbols on {', '.join(config.timeframes)}")

    if once:
        report = engine.run_once()
        engine.stop(reason="single_cycle")
        typer.echo(json.dumps(report.to_dict(), indent=2))
        for signal in report.emitted:
            typer.echo(f"\n🎯 {signal.action.value} {signal.symbol} ({signal.composite_confidence:.1f}%)")
            typer.echo(f"   Entry: {signal.entry:.6g}  Stop: {signal.stop_loss:.6g}  Target: {signal.target_price:.6g}")
            typer.echo(f"   Risk:Reward: {signal.risk_reward_ratio:.2f}:1")
        return

    engine.start()
    try:
        while engine.state != SchedulerState.STOPPED:
            time.sleep(1)
    except KeyboardInterrupt:
        typer.echo("\n⏹  Stopping...")
    finally:
        engine.stop(timeout=config.symbol_timeout_seconds * 2)


@app.command()
def status(
    db: str = typer.Option("data/signals.db", help="Signal database path"),
    limit: int = typer.Option(10, help="Recent signals to show"),
):
    """📊 Show signal statistics from the store."""
    from confluence_engine.data.signal_store import SQLiteSignalStore
    from confluence_engine.shared.models.signals import OutcomeStatus

    store = SQLiteSignalStore(db)
    rows = store.list_signals()
    closed = [o for _, o in rows if o.is_terminal]
    wins = sum(1 for o in closed if o.outcome == OutcomeStatus.WIN)

    typer.echo("📊 Signal statistics")
    typer.echo("=" * 60)
    typer.echo(f"Total signals:  {len(rows)}")
    typer.echo(f"Open:           {len(rows) - len(closed)}")
    typer.echo(f"Closed:         {len(closed)}")
    if closed:
        typer.echo(f"Win rate:       {wins / len(closed):.1%}")
        typer.echo(f"Avg profit:     {sum(o.profit_percent for o in closed) / len(closed):+.2f}%")

    rejections = store.list_rejections(limit=200)
    if rejections:
        breakdown = {}
        for r in rejections:
            breakdown[r.reason.value] = breakdown.get(r.reason.value, 0) + 1
        typer.echo("\nRecent rejections:")
        for reason, count in sorted(breakdown.items(), key=lambda x: x[1], reverse=True):
            typer.echo(f"  • {reason}: {count}")

    if rows:
        typer.echo(f"\nLatest {min(limit, len(rows))} signals:")
        for signal, outcome in rows[:limit]:
            typer.echo(
                f"  {signal.emitted_at:%Y-%m-%d %H:%M} {signal.action.value:4} {signal.symbol:10} "
                f"{signal.composite_confidence:5.1f}%  {outcome.outcome.value}"
            )


@app.command()
def weights(
    db: str = typer.Option("data/signals.db", help="Signal database path"),
):
    """⚖️  Show current method weights learned from closed signals."""
    from confluence_engine.data.signal_store import SQLiteSignalStore
    from confluence_engine.learning.learning_engine import LearningEngine

    engine = LearningEngine(store=SQLiteSignalStore(db))
    engine.rebuild_from_history(persist=False)
    report = engine.performance_report()

    typer.echo(f"⚖️  Method weights ({report['total_outcomes']} outcomes)")
    typer.echo("=" * 60)
    for row in report['methods']:
        typer.echo(
            f"  {row['method']:24} {row['weight']:6.2f}  "
            f"win {row['success_rate']:.0%}  n={row['total_signals']}  PF {row['profit_factor']:.2f}"
        )


@app.command()
def version():
    """Display version information."""
    typer.echo(f"📡 Confluence Engine v{__version__}")


if __name__ == "__main__":
    app()
