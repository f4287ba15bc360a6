"""Service settings for the water scheduler.

Settings come from environment variables (a ``.env`` file found from the
working directory is loaded first). Pump profiles are not settings: they live in the
YAML file named by ``PUMPS_FILE``, see ``water_scheduler.profile``.
"""
import os
import logging

from utils.config_base import ConfigBase, ConfigSchema, ConfigValidationError

from .gpio import GPIO_BACKENDS

logger = logging.getLogger(__name__)


class WaterSchedulerConfig(ConfigBase):
    """Configuration for the water scheduler service."""

    SCHEMA = {
        # Files
        'pumps_file': ConfigSchema(str, default='pumps.yaml', description="Pump profile file (YAML)"),
        'state_file': ConfigSchema(str, default='last_run.json', description="Last-run state file (JSON)"),
        'log_file': ConfigSchema(str, default='water.log', description="Log file, empty to disable"),

        # Loop
        'tick_interval': ConfigSchema(float, default=1.0, min=0.05, max=60.0,
                                      description="Maximum seconds between supervisor ticks"),
        'max_active_pumps': ConfigSchema(int, default=0, min=0,
                                         description="Pumps allowed to water at once (0 = no limit)"),
        'retry_interval': ConfigSchema(float, default=60.0, min=1.0, max=3600.0,
                                      description="Seconds before retrying a pump that failed to switch on"),

        # GPIO
        'gpio_backend': ConfigSchema(str, default='rpi', choices=list(GPIO_BACKENDS),
                                     description="GPIO backend"),
        'gpio_active_low': ConfigSchema(bool, default=False,
                                        description="Relays switch on a LOW output"),
        'gpio_write_retries': ConfigSchema(int, default=3, min=1, max=10,
                                           description="Immediate attempts per GPIO write"),

        # Status events over MQTT (publish only)
        'mqtt_enabled': ConfigSchema(bool, default=False, description="Publish status events to MQTT"),
        'mqtt_broker': ConfigSchema(str, default='localhost', description="MQTT broker hostname"),
        'mqtt_port': ConfigSchema(int, default=1883, min=1, max=65535, description="MQTT broker port"),
        'mqtt_tls': ConfigSchema(bool, default=False, description="Enable TLS for MQTT"),
        'tls_ca_path': ConfigSchema(str, default='/etc/ssl/certs/ca-certificates.crt',
                                    description="CA certificate path"),
        'telemetry_topic': ConfigSchema(str, default='water/telemetry', description="Status event topic"),
    }

    def validate(self):
        if not self.pumps_file:
            raise ConfigValidationError("PUMPS_FILE must not be empty")
        if not self.state_file:
            raise ConfigValidationError("STATE_FILE must not be empty")

        if self.mqtt_enabled and self.mqtt_tls and not os.path.exists(self.tls_ca_path):
            logger.warning(f"TLS enabled but CA certificate not found at {self.tls_ca_path}")

        if self.gpio_backend == 'simulation':
            logger.warning("GPIO_BACKEND=simulation: no pump will actually be switched")
