"""
Command line entry point.

Usage:
    classifier-benchmark benchmark --data flights.csv --target delayed \\
        --positive-label yes --config config/benchmark.yaml --output report.csv

    classifier-benchmark tune --data flights.csv --target delayed \\
        --positive-label yes --learner random_forest --output archive.yaml
"""

import argparse
import logging
import sys
from typing import List, Optional

import yaml

from .config import BenchmarkConfig, load_config
from .exceptions import BenchmarkError
from .learners import Learner, LearnerKind, build_pipeline
from .metrics import compare_to_baseline
from .task import Task

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="classifier-benchmark",
        description="Benchmark and tune binary classifiers with resampling.",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--data", required=True, help="CSV file with a header row")
        sub.add_argument("--target", required=True, help="Target column name")
        sub.add_argument("--positive-label", required=True, help="Label of the positive class")
        sub.add_argument("--config", default=None, help="YAML configuration file")
        sub.add_argument("--seed", type=int, default=None, help="Override the configured seed")
        sub.add_argument("--output", default=None, help="Output file")

    bench = subparsers.add_parser("benchmark", help="Benchmark learners with default pipelines")
    add_common(bench)
    bench.add_argument(
        "--learners",
        nargs="+",
        choices=[kind.value for kind in LearnerKind],
        default=None,
        help="Learners to benchmark (default: from config)",
    )
    bench.add_argument(
        "--baseline",
        default=None,
        help="Spec id to compare every other spec against, e.g. featureless",
    )

    tune = subparsers.add_parser("tune", help="Random-search tuning for one learner")
    add_common(tune)
    tune.add_argument(
        "--learner",
        required=True,
        choices=[kind.value for kind in LearnerKind],
        help="Learner to tune",
    )
    tune.add_argument("--trials", type=int, default=None, help="Override the trial budget")
    tune.add_argument("--metric", default=None, help="Override the target metric")

    return parser


def _load(args: argparse.Namespace) -> tuple:
    config = load_config(args.config)
    if args.seed is not None:
        config.seed = args.seed
    task = Task.from_csv(args.data, target_column=args.target, positive_label=args.positive_label)
    return config, task


def run_benchmark(args: argparse.Namespace) -> None:
    config, task = _load(args)
    learner_ids = args.learners or config.learners
    specs = [
        build_pipeline(Learner(LearnerKind(learner_id)), other_bucket=config.other_bucket)
        for learner_id in learner_ids
    ]

    result = config.make_runner().run(task, specs, config.make_resampling())
    report = result.aggregate()
    frame = report.to_frame()

    for spec_id, reason in report.spec_errors.items():
        logger.warning(f"Spec '{spec_id}' was not run: {reason}")
    for (spec_id, fold_id), reason in report.failed_cells.items():
        logger.warning(f"Cell ({spec_id}, fold {fold_id}) failed: {reason}")

    logger.info(f"Metric report:\n{frame.to_string()}")
    if args.baseline:
        comparison = compare_to_baseline(report, args.baseline)
        for spec_id, metrics in comparison.items():
            improved = [m for m, values in metrics.items() if values["improved"]]
            logger.info(f"{spec_id} beats '{args.baseline}' on {improved}")

    if args.output:
        frame.to_csv(args.output)
        logger.info(f"Wrote metric report to {args.output}")


def run_tune(args: argparse.Namespace) -> None:
    config, task = _load(args)
    target_metric = args.metric or config.target_metric
    trial_budget = args.trials if args.trials is not None else config.trial_budget
    direction = config.direction if target_metric == config.target_metric else None

    template = build_pipeline(Learner(LearnerKind(args.learner)), other_bucket=config.other_bucket)
    result = config.make_tuner().tune(
        task,
        template,
        config.search_space(args.learner),
        config.make_resampling(),
        target_metric=target_metric,
        trial_budget=trial_budget,
        direction=direction,
    )

    logger.info(f"Tuning archive:\n{result.archive.to_frame().to_string()}")
    if args.output:
        with open(args.output, "w") as f:
            yaml.safe_dump(result.to_dict(), f, sort_keys=False)
        logger.info(f"Wrote tuning archive to {args.output}")


def main(argv: Optional[List[str]] = None) -> int:
    """
    Parse arguments, run the selected command and return an exit code.

    Returns:
        0 on success, 1 when the run failed with a fatal error.
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        logger.info(f"Starting {args.command} with parameters: {vars(args)}")
        if args.command == "benchmark":
            run_benchmark(args)
        else:
            run_tune(args)
    except (BenchmarkError, ValueError, KeyError, OSError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    logger.info(f"{args.command} completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
