"""Command-line entry point for quoting swaps and replaying pool scenarios.

Usage:
    cpamm quote-swap --reserve-in 1000 --reserve-out 4000 --amount-in 100
    cpamm run scenario.json --verbose
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import structlog
from pydantic import ValidationError

from cpamm.amm.pool import PoolEngine
from cpamm.amm.quote import quote_swap_amount
from cpamm.config import PoolConfig
from cpamm.custody import InMemoryAssetLedger, InMemoryShareLedger
from cpamm.errors import PoolError
from cpamm.models.events import EventLog
from cpamm.models.scenario import AddLiquidityStep, RemoveLiquidityStep, Scenario, SwapStep

logger = structlog.get_logger()


def configure_logging(verbose: bool = False) -> None:
    """Send structured logs to stderr so stdout stays machine-readable."""
    log_level = logging.DEBUG if verbose else logging.WARNING
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


def build_pool(scenario: Scenario) -> tuple[PoolEngine, InMemoryAssetLedger]:
    """Create an in-memory pool and fund the scenario's holders."""
    assets = InMemoryAssetLedger([scenario.token_a, scenario.token_b])
    for holder, holdings in scenario.balances.items():
        for token, amount in holdings.items():
            assets.credit(token, holder, int(amount))

    config = PoolConfig(
        check_burn_upper_bound=scenario.check_burn_upper_bound,
        swap_reserve_source=scenario.swap_reserve_source,
    )
    pool = PoolEngine(
        scenario.token_a,
        scenario.token_b,
        assets,
        InMemoryShareLedger(),
        address=scenario.pool,
        config=config,
    )
    return pool, assets


def run_scenario(scenario: Scenario) -> dict[str, object]:
    """Replay every operation of a scenario against a fresh pool.

    Returns:
        JSON-ready summary with the events, final reserves and share supply

    Raises:
        PoolError: The first operation that fails, annotated with its index
    """
    pool, _ = build_pool(scenario)

    for index, step in enumerate(scenario.operations):
        try:
            if isinstance(step, SwapStep):
                pool.swap(step.sender, step.token_in, step.token_out, int(step.amount_in))
            elif isinstance(step, AddLiquidityStep):
                pool.add_liquidity(step.sender, int(step.amount_a), int(step.amount_b))
            elif isinstance(step, RemoveLiquidityStep):
                pool.remove_liquidity(step.sender, int(step.liquidity))
        except PoolError as err:
            err.add_note(f"operation {index} ({step.op})")
            raise

    reserve_a, reserve_b = pool.get_reserves()
    log = EventLog(events=list(pool.events))
    return {
        "pool": pool.address,
        "reserves": [str(reserve_a), str(reserve_b)],
        "totalShares": str(pool.get_total_shares()),
        "events": log.model_dump(mode="json", by_alias=True)["events"],
    }


def _cmd_quote_swap(args: argparse.Namespace) -> int:
    invariant = args.invariant
    if invariant is None:
        invariant = args.reserve_in * args.reserve_out
    try:
        amount_out = quote_swap_amount(args.amount_in, args.reserve_in, args.reserve_out, invariant)
    except PoolError as err:
        print(json.dumps({"error": type(err).__name__, "detail": str(err)}))
        return 1
    print(json.dumps({"amountOut": str(amount_out), "invariant": str(invariant)}))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    if not args.scenario.exists():
        logger.error("scenario_not_found", path=str(args.scenario))
        print(f"Error: Scenario file not found: {args.scenario}", file=sys.stderr)
        return 1

    try:
        scenario = Scenario.model_validate_json(args.scenario.read_text())
    except ValidationError as err:
        print(f"Error: Invalid scenario: {err}", file=sys.stderr)
        return 1

    try:
        summary = run_scenario(scenario)
    except PoolError as err:
        notes = getattr(err, "__notes__", [])
        print(
            json.dumps({"error": type(err).__name__, "detail": str(err), "at": notes}),
        )
        return 1

    print(json.dumps(summary, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cpamm",
        description="Quote and replay operations on a constant-product pool",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    quote = subparsers.add_parser("quote-swap", help="Price a single swap")
    quote.add_argument("--reserve-in", type=int, required=True, help="Reserve of the token sold")
    quote.add_argument("--reserve-out", type=int, required=True, help="Reserve of the token bought")
    quote.add_argument("--amount-in", type=int, required=True, help="Amount sold")
    quote.add_argument(
        "--invariant",
        type=int,
        default=None,
        help="Recorded k (default: reserve-in * reserve-out)",
    )
    quote.set_defaults(handler=_cmd_quote_swap)

    run = subparsers.add_parser("run", help="Replay a JSON scenario against an in-memory pool")
    run.add_argument("scenario", type=Path, help="Path to the scenario JSON file")
    run.set_defaults(handler=_cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
