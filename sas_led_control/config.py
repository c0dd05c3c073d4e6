"""Configuration management for LED control"""

import os
import logging
from typing import Optional
import yaml

from .models import Settings

DEFAULT_CONFIG_FILE = "/etc/sas_led_control.conf"
CONFIG_ENV_VAR = "SAS_LED_CONTROL_CONF"


class ConfigManager:
    """Manages loading and accessing configuration from YAML file"""

    def __init__(self, config_file: Optional[str] = None, logger: Optional[logging.Logger] = None):
        """Initialize configuration manager

        Args:
            config_file: Path to configuration file, defaults to $SAS_LED_CONTROL_CONF
                         or /etc/sas_led_control.conf
            logger: Logger instance
        """
        config_file = config_file or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_FILE
        self.config_file = os.path.expanduser(config_file)
        self.logger = logger or logging.getLogger(__name__)

        self.settings = Settings()

        self.load()

    def load(self) -> None:
        """Load configuration from YAML file

        Configuration file structure (every key is optional):
        ```yaml
        cache_file: /tmp/sas2ircu-led-topology.cache
        cache_ttl: 300              # Seconds before the topology is re-queried
        blink_pid_dir: /tmp/sas2ircu-led-blink-pids
        list_timeout: 5
        display_timeout: 10
        locate_timeout: 5
        lookup_timeout: 10
        blink_read_seconds: 3
        blink_idle_seconds: 3
        blink_block_mb: 100
        binaries: [sas2ircu, sas3ircu]
        sys_block: /sys/block
        device_pattern: "sd*"
        max_workers: 8
        ```
        """
        if not os.path.exists(self.config_file):
            self.logger.debug(f"Configuration file {self.config_file} not found. Using default settings.")
            return

        try:
            self.logger.debug(f"Loading configuration from {self.config_file}")

            with open(self.config_file, 'r') as f:
                config = yaml.safe_load(f)

            if not config:
                self.logger.warning(f"Configuration file {self.config_file} is empty or invalid")
                return

            if not isinstance(config, dict):
                self.logger.error(f"Configuration file {self.config_file} must contain a mapping")
                return

            unknown = sorted(set(config) - set(Settings.__dataclass_fields__))
            if unknown:
                self.logger.warning(f"Ignoring unknown configuration keys: {', '.join(map(str, unknown))}")

            self.settings = Settings.from_dict(config)

        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing YAML in configuration file: {e}")
        except IOError as e:
            self.logger.error(f"Error reading configuration file: {e}")
        except (TypeError, ValueError) as e:
            self.logger.error(f"Invalid value in configuration file: {e}")
