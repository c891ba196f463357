from __future__ import annotations

import argparse
import logging
import os
import time

from .config import AppConfig, load_config
from .dispatcher import Dispatcher, DispatchRunReport, build_dispatcher
from .errors import FatalStoreError
from .server import make_server


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sae", description="Sensor Alert Engine (health evaluation + alert notification)")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env SAE_LOG_LEVEL or INFO",
    )
    p.add_argument(
        "--status-interval",
        type=int,
        default=None,
        help="Daemon heartbeat interval seconds. Defaults to env SAE_STATUS_INTERVAL_SECONDS or 60. Set 0 to disable.",
    )

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Run one dispatch cycle and exit")
    mode.add_argument("--daemon", action="store_true", help="Run dispatch cycles forever with poll interval")
    mode.add_argument("--serve", action="store_true", help="Serve the HTTP trigger endpoint")
    mode.add_argument("--sweep-offline", action="store_true", help="Run one offline sweep and exit")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _log_report(logger: logging.Logger, prefix: str, report: DispatchRunReport) -> None:
    logger.info(
        "%s: duration_ms=%d sensors=%d evaluated=%d status_changes=%d alerts=%d notified=%d recipients=%d notify_failures=%d suppressed=%d deferred=%d errors=%d",
        prefix,
        report.duration_ms,
        len(report.sensors),
        report.sensors_evaluated,
        report.status_changes,
        report.alerts_active,
        report.notify_successes,
        report.recipients_notified,
        report.notify_failures,
        report.suppressed_cooldown,
        report.deferred,
        report.sensor_errors,
    )


def _run_daemon(logger: logging.Logger, config: AppConfig, dispatcher: Dispatcher, status_interval: int) -> int:
    cycle_id = 0
    last_report: DispatchRunReport | None = None
    next_heartbeat_at = time.monotonic() + status_interval if status_interval > 0 else float("inf")

    while True:
        cycle_id += 1
        try:
            last_report = dispatcher.run_once()
        except FatalStoreError:
            logger.exception("cycle aborted: id=%d", cycle_id)
        except Exception:  # noqa: BLE001
            logger.exception("cycle crashed: id=%d", cycle_id)
        else:
            if (
                status_interval <= 0
                or last_report.status_changes > 0
                or last_report.notify_attempts > 0
                or last_report.sensor_errors > 0
                or last_report.deferred > 0
            ):
                _log_report(logger, f"cycle summary: id={cycle_id}", last_report)

        sleep_end = time.monotonic() + config.poll_interval_seconds
        while True:
            now = time.monotonic()
            if now >= sleep_end:
                break

            if status_interval > 0 and now >= next_heartbeat_at:
                logger.info(
                    "daemon alive: cycles=%d next_run_in=%ds last_duration_ms=%s last_alerts=%s last_notified=%s",
                    cycle_id,
                    max(0, int(sleep_end - now)),
                    last_report.duration_ms if last_report else "-",
                    last_report.alerts_active if last_report else "-",
                    last_report.notify_successes if last_report else "-",
                )
                next_heartbeat_at = now + status_interval

            remaining_s = sleep_end - now
            if status_interval > 0:
                time.sleep(min(remaining_s, max(0.2, next_heartbeat_at - now)))
            else:
                time.sleep(min(remaining_s, 1.0))


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    log_level = _resolve_log_level(args.log_level or os.environ.get("SAE_LOG_LEVEL"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("sae")

    config = load_config(args.config)
    dispatcher = build_dispatcher(config)

    status_interval = args.status_interval
    if status_interval is None:
        try:
            status_interval = int(os.environ.get("SAE_STATUS_INTERVAL_SECONDS") or 60)
        except ValueError:
            status_interval = 60
    status_interval = max(0, int(status_interval))

    if args.daemon:
        mode = "daemon"
    elif args.serve:
        mode = "serve"
    elif args.sweep_offline:
        mode = "sweep-offline"
    else:
        mode = "once"
    logger.info("sae start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: sqlite_path=%s offline_threshold_seconds=%d cooldown_seconds=%d max_workers=%d run_deadline_seconds=%s notify_offline=%s",
        config.sqlite_path,
        config.offline_threshold_seconds,
        config.cooldown_seconds,
        config.max_workers,
        config.run_deadline_seconds if config.run_deadline_seconds is not None else "<none>",
        config.notify_offline,
    )
    if dispatcher.transport is None:
        logger.warning("no email transport configured; statuses will be updated but alerts not delivered")

    if mode == "sweep-offline":
        try:
            sweep = dispatcher.detector.sweep(dispatcher.store)
        except FatalStoreError:
            logger.exception("offline sweep aborted")
            return 1
        logger.info(
            "sweep done: checked=%d went_offline=%d errors=%d",
            sweep.sensors_checked,
            len(sweep.transitioned),
            sweep.errors,
        )
        return 0

    if mode == "serve":
        server = make_server(
            dispatcher,
            host=config.server.host,
            port=config.server.port,
            secret=config.resolve_env(config.server.secret_env),
        )
        logger.info("serving trigger endpoint: http://%s:%d", config.server.host, config.server.port)
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("shutting down")
        finally:
            server.server_close()
        return 0

    if mode == "daemon":
        logger.info(
            "daemon: poll_interval_seconds=%d status_interval_seconds=%d",
            config.poll_interval_seconds,
            status_interval,
        )
        return _run_daemon(logger, config, dispatcher, status_interval)

    try:
        report = dispatcher.run_once()
    except FatalStoreError:
        logger.exception("run aborted")
        return 1
    _log_report(logger, "once done", report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
