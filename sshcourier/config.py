"""
Configuration Manager for sshcourier
Handles automation timings, session options and secret-storage settings
"""

import copy
import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from .platform_utils import get_config_dir

logger = logging.getLogger(__name__)

# Increment this whenever the configuration format changes
CONFIG_VERSION = 1

DEFAULT_PASSPHRASE_PROMPTS = [
    "enter passphrase",
    "passphrase for",
    "password:",
]

DEFAULT_SUDO_PROMPTS = [
    "[sudo] password",
    "password for",
    "password:",
]

DEFAULT_SHELL_PROMPT_SUFFIXES = ["$", "#", ">"]

# Text the remote side prints once ssh has logged in
DEFAULT_LOGIN_BANNERS = ["last login"]


class Config:
    """Configuration manager for sshcourier"""

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = config_dir or get_config_dir()
        self.config_file = os.path.join(self.config_dir, 'config.json')
        self.config_data = self.load_json_config()

    def load_json_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    config = json.load(f)
                if not isinstance(config, dict):
                    raise ValueError("configuration root must be an object")

                # Purge outdated configurations
                stored_version = config.get('config_version', 0)
                if not isinstance(stored_version, int) or stored_version < CONFIG_VERSION:
                    backup_file = f"{self.config_file}.bak"
                    try:
                        os.replace(self.config_file, backup_file)
                        logger.warning(
                            "Outdated config version %s detected; backing up to %s and regenerating defaults",
                            stored_version,
                            backup_file,
                        )
                    except OSError:
                        os.remove(self.config_file)
                        logger.warning(
                            "Outdated config version %s detected; old config removed and new defaults generated",
                            stored_version,
                        )

                    config = self.get_default_config()
                    self.save_json_config(config)
                else:
                    config, updated = self._ensure_config_defaults(config)
                    if updated:
                        self.save_json_config(config)

                return config
            else:
                # Create default config
                default_config = self.get_default_config()
                self.save_json_config(default_config)
                return default_config
        except Exception as e:
            logger.error(f"Failed to load JSON config: {e}")
            return self.get_default_config()

    def save_json_config(self, config_data: Dict[str, Any] = None):
        """Save configuration to JSON file"""
        try:
            if config_data is None:
                config_data = self.config_data

            os.makedirs(os.path.dirname(self.config_file), exist_ok=True)
            with open(self.config_file, 'w', encoding='utf-8') as f:
                json.dump(config_data, f, indent=2)

            logger.debug("Configuration saved to JSON file")
        except Exception as e:
            logger.error(f"Failed to save JSON config: {e}")

    def get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values"""
        return {
            'config_version': CONFIG_VERSION,
            'automation': {
                'strategy': 'timed',  # 'timed' or 'detect'
                'initial_delay': 3.0,
                'establish_delay': 3.0,
                'sudo_prompt_delay': 1.5,
                'command_delay': 1.0,
                'poll_interval': 0.25,
                'detection_timeout': 15.0,
                'passphrase_prompts': list(DEFAULT_PASSPHRASE_PROMPTS),
                'sudo_prompts': list(DEFAULT_SUDO_PROMPTS),
                'shell_prompt_suffixes': list(DEFAULT_SHELL_PROMPT_SUFFIXES),
                'login_banners': list(DEFAULT_LOGIN_BANNERS),
            },
            'session': {
                'working_dir': None,  # None for the home directory
                'output_buffer_chars': 65536,
                'disconnect_sequence': 'exit',  # 'exit' or 'eof'
            },
            'security': {
                'service_name': 'sshcourier',
            },
            'logging': {
                'debug_enabled': False,
            },
        }

    def get_setting(self, key: str, default=None):
        """Get a setting value using a dotted key"""
        try:
            keys = key.split('.')
            value = self.config_data
            for k in keys:
                if isinstance(value, dict) and k in value:
                    value = value[k]
                else:
                    return default
            return value
        except Exception as e:
            logger.error(f"Failed to get setting {key}: {e}")
            return default

    def set_setting(self, key: str, value: Any):
        """Set a setting value and persist it"""
        try:
            keys = key.split('.')
            current = self.config_data
            for k in keys[:-1]:
                if k not in current or not isinstance(current[k], dict):
                    current[k] = {}
                current = current[k]
            current[keys[-1]] = value
            self.save_json_config()

            logger.debug(f"Setting {key} = {value}")

        except Exception as e:
            logger.error(f"Failed to set setting {key}: {e}")

    def get_automation_config(self) -> Dict[str, Any]:
        """Get automation timings and prompt vocabularies with sensible defaults.

        Numbers that cannot be parsed, or are negative, fall back to the
        default for that key. Vocabulary lists drop non-string entries.
        """

        defaults = self.get_default_config()['automation']
        float_keys = {
            'initial_delay',
            'establish_delay',
            'sudo_prompt_delay',
            'command_delay',
            'poll_interval',
            'detection_timeout',
        }
        list_keys = {'passphrase_prompts', 'sudo_prompts', 'shell_prompt_suffixes', 'login_banners'}

        config: Dict[str, Any] = {}

        for key, default_value in defaults.items():
            value = self.get_setting(f'automation.{key}', default_value)

            if key in float_keys:
                try:
                    value = float(value)
                except (TypeError, ValueError):
                    value = default_value
                if value < 0:
                    value = default_value
            elif key in list_keys:
                value = _string_list(value, default_value)
            elif key == 'strategy':
                normalized = str(value or '').strip().lower()
                value = normalized if normalized in {'timed', 'detect'} else default_value

            config[key] = value

        return config

    def get_session_config(self) -> Dict[str, Any]:
        """Get session options"""
        defaults = self.get_default_config()['session']

        working_dir = self.get_setting('session.working_dir', defaults['working_dir'])
        if not isinstance(working_dir, str) or not working_dir.strip():
            working_dir = None
        else:
            working_dir = os.path.expanduser(working_dir.strip())

        try:
            buffer_chars = int(self.get_setting('session.output_buffer_chars', defaults['output_buffer_chars']))
        except (TypeError, ValueError):
            buffer_chars = defaults['output_buffer_chars']
        if buffer_chars <= 0:
            buffer_chars = defaults['output_buffer_chars']

        sequence = str(self.get_setting('session.disconnect_sequence', defaults['disconnect_sequence']) or '')
        sequence = sequence.strip().lower()
        if sequence not in {'exit', 'eof'}:
            sequence = defaults['disconnect_sequence']

        return {
            'working_dir': working_dir,
            'output_buffer_chars': buffer_chars,
            'disconnect_sequence': sequence,
        }

    def get_security_config(self) -> Dict[str, Any]:
        """Get security configuration"""
        service_name = self.get_setting('security.service_name', 'sshcourier')
        if not isinstance(service_name, str) or not service_name.strip():
            service_name = 'sshcourier'
        return {'service_name': service_name.strip()}

    def reset_to_defaults(self):
        """Reset all settings to defaults"""
        self.config_data = self.get_default_config()
        self.save_json_config()
        logger.info("Configuration reset to defaults")

    def _ensure_config_defaults(self, config: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
        """Ensure newly added keys exist in the provided config dict."""
        updated = False
        defaults = self.get_default_config()

        for section, section_defaults in defaults.items():
            if not isinstance(section_defaults, dict):
                continue
            current = config.get(section)
            if not isinstance(current, dict):
                config[section] = copy.deepcopy(section_defaults)
                updated = True
                continue
            for key, value in section_defaults.items():
                if key not in current:
                    current[key] = copy.deepcopy(value)
                    updated = True

        debug_value = config['logging'].get('debug_enabled')
        if not isinstance(debug_value, bool):
            config['logging']['debug_enabled'] = bool(debug_value)
            updated = True

        return config, updated


def _string_list(value: Any, default: List[str]) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return list(default)
    items = [item for item in value if isinstance(item, str) and item]
    return items or list(default)
