import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional


def _setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure root logger to log to stderr and, optionally, a log file.

    Args:
        verbose: If ``True`` set console log level to ``DEBUG`` else ``INFO``.
        log_file: Optional path to a log file receiving ``DEBUG`` output.
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers = []

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(logging.Formatter(log_format))
    handlers.append(console_handler)

    # File handler (always DEBUG for maximum detail)
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format))
        handlers.append(file_handler)

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)
    logging.debug("Logging initialised. Log file: %s", log_file)


def _load_settings(args: argparse.Namespace):
    """Settings from ``--config`` when given, else from ``--preset``; applies ``--seed``."""
    from .config import Settings, set_config

    if getattr(args, "config", None):
        settings = Settings.from_toml(args.config)
    else:
        settings = Settings.from_preset(getattr(args, "preset", "default"))

    if getattr(args, "seed", None) is not None:
        settings = settings.update(random_seed=args.seed)
    set_config(settings)
    return settings


# -----------------------------------------------------------------------------
# Sub-command implementations
# -----------------------------------------------------------------------------

def _cmd_simulate(args: argparse.Namespace) -> int:
    """Entry point for the ``simulate`` sub-command."""
    logger = logging.getLogger(__name__)
    from .data import generate_ema_dataset, save_ema_csv

    try:
        dataset = generate_ema_dataset(
            n_participants=args.participants,
            n_observations=args.observations,
            interval_hours=args.interval,
            seed=args.seed,
        )
    except ValueError as exc:
        logger.error("Invalid simulation parameters: %s", exc)
        return 1

    path = save_ema_csv(dataset, args.output)
    logger.info("Wrote %d participants (%d observations) to %s",
                len(dataset), dataset.num_observations, path)
    return 0


def _cmd_train(args: argparse.Namespace) -> int:
    """Entry point for the ``train`` sub-command."""
    logger = logging.getLogger(__name__)
    from .core import PLRNNEngine, PLRNNTrainer
    from .data import load_ema_csv, save_weights

    try:
        settings = _load_settings(args)
        dataset = load_ema_csv(args.data)
    except (OSError, ValueError) as exc:
        logger.error("Failed to load inputs: %s", exc)
        return 1

    training = settings.training
    if args.epochs is not None:
        training = replace(training, epochs=args.epochs)
    if settings.verbose or args.verbose:
        training = replace(training, verbose=True)

    engine = PLRNNEngine(settings.plrnn, seed=settings.random_seed)
    engine.initialize()
    trainer = PLRNNTrainer(engine, training, seed=settings.random_seed)

    try:
        result = trainer.train(dataset)
    except ValueError as exc:
        logger.error("Training failed: %s", exc)
        return 2

    path = save_weights(result.trained_weights, args.output)
    metrics = result.metrics
    logger.info("Best epoch %d, validation loss %.4f, improvement over persistence %.1f%%",
                result.history.best_epoch, result.history.best_validation_loss,
                metrics.improvement_over_persistence)
    logger.info("Saved weights to %s", path)
    return 0


def _participant_history(dataset, participant_id: Optional[str]):
    if participant_id is None:
        if not dataset.participants:
            raise ValueError("Dataset contains no participants")
        return dataset.participants[0]
    return dataset.get_participant(participant_id)


def _cmd_forecast(args: argparse.Namespace) -> int:
    """Entry point for the ``forecast`` sub-command."""
    logger = logging.getLogger(__name__)
    from .core import EngineKind, create_engine
    from .data import load_ema_csv, load_weights_file

    try:
        settings = _load_settings(args)
        dataset = load_ema_csv(args.data)
        participant = _participant_history(dataset, args.participant)
    except (OSError, ValueError, KeyError) as exc:
        logger.error("Failed to load inputs: %s", exc)
        return 1

    if len(participant) == 0:
        logger.error("Participant %s has no observations", participant.participant_id)
        return 1

    kind = EngineKind(args.engine)
    config = settings.plrnn if kind is EngineKind.PLRNN else settings.kalmanformer
    engine = create_engine(kind, config, seed=settings.random_seed, initialize=args.weights is None)
    if args.weights is not None:
        engine.load_weights(load_weights_file(args.weights))

    values = participant.values
    timestamps = participant.timestamps

    if kind is EngineKind.PLRNN:
        state = engine.create_state(values[-1], timestamps[-1])
        prediction = engine.predict(state, args.horizon)
        output = {
            'participant_id': participant.participant_id,
            'engine': kind.value,
            'prediction': prediction.to_dict(),
            'causal_network': engine.extract_causal_network(state).to_dict(),
        }
    else:
        state = engine.create_state(values[0], timestamps[0])
        for obs, ts in zip(values[1:], timestamps[1:]):
            state = engine.update(state, obs, ts)
        prediction = engine.predict(state, args.horizon)
        output = {
            'participant_id': participant.participant_id,
            'engine': kind.value,
            'prediction': prediction.to_dict(),
        }

    print(json.dumps(output, indent=2, default=str))

    if args.plot:
        from .viz import plot_forecast
        plot_forecast(values, prediction, title=f"{participant.participant_id} forecast",
                      save_path=args.plot)
        logger.info("Saved forecast plot to %s", args.plot)
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    """Entry point for the ``config`` sub-command."""
    logger = logging.getLogger(__name__)
    from .config import Settings

    try:
        settings = Settings.from_preset(args.preset)
        settings.to_toml(args.output)
    except (ValueError, ImportError, OSError) as exc:
        logger.error("Could not write configuration: %s", exc)
        return 1

    logger.info("Wrote %s preset to %s", args.preset, args.output)
    return 0


def _cmd_env(args: argparse.Namespace) -> int:
    """Entry point for the ``env`` sub-command."""
    logger = logging.getLogger(__name__)
    from .config.validate import check_environment, format_environment_info

    print(format_environment_info())
    try:
        check_environment()
    except RuntimeError as exc:
        logger.error("%s", exc)
        return 1
    return 0


# -----------------------------------------------------------------------------
# Argument parsing
# -----------------------------------------------------------------------------

def _add_settings_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=str, default=None, help="TOML settings file.")
    parser.add_argument("--preset", choices=["default", "tuned", "minimal"], default="default",
                        help="Settings preset used when no --config is given.")
    parser.add_argument("--seed", type=int, default=None, help="Random seed.")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cognitive-forecast",
        description="Cognitive state forecasting command-line interface",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging output.",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Also log to this file.")

    sub_parsers = parser.add_subparsers(dest="command", required=True)

    # simulate ----------------------------------------------------------------
    sim_parser = sub_parsers.add_parser("simulate", help="Write a synthetic EMA dataset as CSV")
    sim_parser.add_argument("output", type=str, help="Destination CSV file.")
    sim_parser.add_argument("--participants", type=int, default=10)
    sim_parser.add_argument("--observations", type=int, default=60)
    sim_parser.add_argument("--interval", type=float, default=4.0, help="Nominal hours between prompts.")
    sim_parser.add_argument("--seed", type=int, default=None, help="Random seed.")
    sim_parser.set_defaults(func=_cmd_simulate)

    # train -------------------------------------------------------------------
    train_parser = sub_parsers.add_parser("train", help="Train a PLRNN on EMA data")
    train_parser.add_argument("data", type=str, help="EMA CSV file.")
    train_parser.add_argument("--output", "-o", type=str, default="output/plrnn_weights.json",
                              help="Destination weights JSON file.")
    train_parser.add_argument("--epochs", type=int, default=None, help="Override the number of epochs.")
    _add_settings_arguments(train_parser)
    train_parser.set_defaults(func=_cmd_train)

    # forecast ----------------------------------------------------------------
    forecast_parser = sub_parsers.add_parser("forecast", help="Forecast one participant's state")
    forecast_parser.add_argument("data", type=str, help="EMA CSV file with the participant history.")
    forecast_parser.add_argument("--participant", type=str, default=None,
                                 help="Participant id (first participant by default).")
    forecast_parser.add_argument("--engine", choices=["plrnn", "kalmanformer"], default="plrnn")
    forecast_parser.add_argument("--weights", type=str, default=None,
                                 help="Weights JSON file; fresh weights when omitted.")
    forecast_parser.add_argument("--horizon", type=int, default=12, help="Forecast steps.")
    forecast_parser.add_argument("--plot", type=str, default=None, help="Save a fan chart to this path.")
    _add_settings_arguments(forecast_parser)
    forecast_parser.set_defaults(func=_cmd_forecast)

    # config ------------------------------------------------------------------
    config_parser = sub_parsers.add_parser("config", help="Write a settings TOML file")
    config_parser.add_argument("output", type=str, help="Destination TOML file.")
    config_parser.add_argument("--preset", choices=["default", "tuned", "minimal"], default="default")
    config_parser.set_defaults(func=_cmd_config)

    # env ---------------------------------------------------------------------
    env_parser = sub_parsers.add_parser("env", help="Show dependency versions")
    env_parser.set_defaults(func=_cmd_env)

    return parser


# -----------------------------------------------------------------------------
# Main entry point
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point. Parse ``argv`` and dispatch to sub-command implementation."""

    parser = _build_parser()
    args = parser.parse_args(argv)

    # Logging must be set up *after* parsing to respect --verbose flag.
    _setup_logging(verbose=args.verbose, log_file=Path(args.log_file) if args.log_file else None)

    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
