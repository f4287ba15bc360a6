#!/usr/bin/env python3
"""Command-line interface for the water scheduler.

Usage:
    water-scheduler run
    water-scheduler test basil 2.5
    water-scheduler validate --show-settings --format yaml
    water-scheduler --config-file /etc/water/pumps.yaml run
"""
import sys
import logging
import argparse
from typing import List, Optional

from utils.config_base import ConfigValidationError
from utils.logging_config import setup_file_logging, setup_logging

from . import __version__
from .clock import SystemClock
from .config import WaterSchedulerConfig
from .controller import COMPLETED
from .errors import ConfigurationError, WaterError
from .events import CompositeEventSink, EventSink, LoggingEventSink, MqttEventSink
from .gpio import create_gpio_port
from .persistence import LastRunStore
from .profile import load_pump_profiles
from .supervisor import Supervisor

logger = logging.getLogger(__name__)

SERVICE_NAME = 'water_scheduler'


def build_event_sink(config: WaterSchedulerConfig) -> EventSink:
    """Logging sink, plus MQTT when enabled."""
    sinks = [LoggingEventSink()]
    if config.mqtt_enabled:
        sinks.append(MqttEventSink(
            config.mqtt_broker,
            port=config.mqtt_port,
            topic=config.telemetry_topic,
            tls=config.mqtt_tls,
            ca_path=config.tls_ca_path,
        ))
    return CompositeEventSink(sinks)


def build_supervisor(config: WaterSchedulerConfig, events: EventSink) -> Supervisor:
    """Check the clock, load the pumps and wire up the supervisor.

    Raises:
        ClockError: If no monotonic clock is available
        ConfigurationError: If the pump file is invalid
        GpioError: If the GPIO backend cannot be loaded
    """
    clock = SystemClock()
    clock.check()

    profiles = load_pump_profiles(config.pumps_file)
    for profile in profiles:
        logger.info(f"Configured {profile}")

    gpio = create_gpio_port(
        config.gpio_backend,
        active_low=config.gpio_active_low,
        write_retries=config.gpio_write_retries,
    )
    return Supervisor(
        profiles,
        gpio,
        LastRunStore(config.state_file),
        clock=clock,
        events=events,
        tick_interval=config.tick_interval,
        max_active_pumps=config.max_active_pumps,
        retry_interval=config.retry_interval,
    )


def _start_logging(config: WaterSchedulerConfig, command: str):
    setup_file_logging(SERVICE_NAME, config.log_file)
    mode = "simulation" if config.gpio_backend == 'simulation' else "hardware"
    logger.info(f"Water scheduler {__version__} starting '{command}' in {mode} mode")


def run_command(args, config: WaterSchedulerConfig) -> int:
    """Run the scheduler until SIGINT or SIGTERM."""
    _start_logging(config, 'run')
    events = None
    try:
        events = build_event_sink(config)
        supervisor = build_supervisor(config, events)
        supervisor.run()
        return 0
    except (WaterError, OSError) as e:
        logger.critical(f"Water scheduler stopped: {e}")
        return 1
    finally:
        if events is not None:
            events.close()


def test_command(args, config: WaterSchedulerConfig) -> int:
    """Run one pump for a few seconds outside the schedule."""
    _start_logging(config, 'test')
    events = None
    supervisor = None
    try:
        events = build_event_sink(config)
        supervisor = build_supervisor(config, events)
        profile = supervisor.engine.get(args.pump)
        if profile is None:
            available = ", ".join(c for c in supervisor.controllers)
            logger.error(f"Unknown pump '{args.pump}' (available: {available})")
            return 1
        if not profile.enabled:
            logger.warning(f"Pump {args.pump} is disabled, nothing done")
            return 0
        if not 0 < args.seconds <= profile.safety_ceiling:
            logger.warning(f"Test duration {args.seconds}s for {args.pump} outside "
                           f"(0, {profile.safety_ceiling}]s, nothing done")
            return 0

        logger.info(f"Testing {args.pump} for {args.seconds}s")
        result = supervisor.test_pump(args.pump, args.seconds)
        if result is None or result.outcome != COMPLETED:
            logger.error(f"Test of {args.pump} did not complete")
            return 1
        logger.info(f"Test of {args.pump} finished after {result.runtime:.2f}s")
        return 0
    except KeyboardInterrupt:
        logger.info("Test interrupted")
        return 1
    except (WaterError, OSError) as e:
        logger.critical(f"Test failed: {e}")
        return 1
    finally:
        if supervisor is not None:
            supervisor.shutdown()
        if events is not None:
            events.close()


def validate_command(args, config: WaterSchedulerConfig) -> int:
    """Validate the pump file and print the profiles."""
    setup_logging(SERVICE_NAME, log_level='WARNING')
    try:
        profiles = load_pump_profiles(config.pumps_file)
    except ConfigurationError as e:
        print(f"Pump configuration invalid: {e}")
        return 1

    print(f"{config.pumps_file}: {len(profiles)} pumps")
    for profile in profiles:
        print(f"  - {profile}")

    if args.show_settings:
        print()
        print(config.export(args.format))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='water-scheduler',
        description='Daily GPIO water pump scheduler'
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument(
        '--config-file',
        help='Pump profile file (overrides PUMPS_FILE)'
    )
    parser.add_argument(
        '--log-file',
        help='Log file (overrides LOG_FILE)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Run the scheduler until interrupted'
    )
    run_parser.set_defaults(func=run_command)

    test_parser = subparsers.add_parser(
        'test',
        help='Run one enabled pump for a few seconds'
    )
    test_parser.add_argument(
        'pump',
        help='Pump name'
    )
    test_parser.add_argument(
        'seconds',
        nargs='?',
        type=float,
        default=1.0,
        help='Seconds to run the pump (default: 1.0)'
    )
    test_parser.set_defaults(func=test_command)

    validate_parser = subparsers.add_parser(
        'validate',
        help='Validate the pump profile file'
    )
    validate_parser.add_argument(
        '--show-settings',
        action='store_true',
        help='Also print the service settings'
    )
    validate_parser.add_argument(
        '--format',
        choices=['json', 'yaml'],
        default='yaml',
        help='Settings output format'
    )
    validate_parser.set_defaults(func=validate_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the water scheduler CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        config = WaterSchedulerConfig(overrides={
            'pumps_file': args.config_file,
            'log_file': args.log_file,
        })
    except ConfigValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    return args.func(args, config)


if __name__ == '__main__':
    sys.exit(main())
