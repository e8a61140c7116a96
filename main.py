from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from scrapepipe.config import load_config
from scrapepipe.errors import ConfigError
from scrapepipe.metrics import MetricsCollector
from scrapepipe.scheduler import Scheduler


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
FILE_LOG_FORMAT = "%(levelname)s - %(message)s"


def configure_logging(level: str, log_file: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    handlers[0].setFormatter(logging.Formatter(LOG_FORMAT))
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        handlers.append(file_handler)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=handlers, force=True)


def write_metrics(metrics: MetricsCollector, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(metrics.export_json(), f, ensure_ascii=False, indent=2)


def run(
    config_path: str,
    workers: Optional[int] = None,
    queue_size: Optional[int] = None,
    metrics_out: Optional[str] = None,
) -> int:
    metrics = MetricsCollector()
    run_config = load_config(config_path, metrics=metrics)

    scheduler = Scheduler(
        workers=workers or run_config.workers,
        queue_size=queue_size or run_config.queue_size,
    )
    scheduler.start()
    try:
        for unit in run_config.units:
            scheduler.submit(unit.run, scheduler)
        scheduler.join()
    finally:
        run_config.close()

    snapshot = metrics.snapshot()
    print(
        f"\nDONE: requests={snapshot.total_requests} success={snapshot.success_count} "
        f"http_errors={snapshot.http_error_count} transport_errors={snapshot.transport_error_count} "
        f"avg_latency_ms={snapshot.avg_latency_ms:.1f} units={scheduler.completed} "
        f"failed_auth={run_config.failed_units} config_errors={len(scheduler.config_errors)}"
    )
    if metrics_out:
        write_metrics(metrics, metrics_out)
    return 1 if scheduler.config_errors or scheduler.unit_errors else 0


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run a declarative scraping pipeline")
    parser.add_argument("config", help="Path to the JSON configuration document")

    parser.add_argument("--workers", type=int, default=None, help="Worker pool width (default from config, 15)")
    parser.add_argument("--queue-size", type=int, default=None, help="Work queue capacity (default from config, 15)")

    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--log-file", default=None, help="Also write log records to this file")
    parser.add_argument("--metrics-out", default=None, help="Write every per-request record to this JSON file")

    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    try:
        code = run(args.config, workers=args.workers, queue_size=args.queue_size, metrics_out=args.metrics_out)
    except ConfigError as exc:
        logging.getLogger(__name__).error("%s", exc)
        sys.exit(2)
    sys.exit(code)


if __name__ == "__main__":
    main()
