# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Loads resolver settings from a YAML file, a .env file and the environment.

Example config file::

    timeout: 10
    retries: 5
    insecure_registries: [localhost:5000]
    credentials:
      ghcr.io:
        username: me
        password: ghp_xxx
    overrides:
      alpine:3.13: sha256:469b6e04ee185740477efa44ed5bdd64a07bbdd6c7e5f5d169e540889597b911
"""
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import find_dotenv, load_dotenv
from pydantic import ValidationError

from ..MODELS.settings import Settings

logger = logging.getLogger(__name__)

ENV_PREFIX = "DFPIN_"


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""


class ConfigParser:
    """
    Parser for dfpin configuration.
    """
    def __init__(self, env: Optional[Mapping[str, str]] = None, use_dotenv: bool = True):
        """
        Initializes the parser.

        :param env: Environment to read DFPIN_* variables from. Defaults to os.environ.
        :param use_dotenv: Whether to load a .env file into os.environ first.
        """
        self.use_dotenv = use_dotenv
        self._env = env

    @property
    def env(self) -> Mapping[str, str]:
        return self._env if self._env is not None else os.environ

    def load(self, config_path: Optional[str] = None) -> Settings:
        """
        Builds settings from the config file, then applies environment overrides.

        :param config_path: Path to a YAML config file. Falls back to DFPIN_CONFIG.
        :return: Validated settings.
        :raises ConfigError: If the file is unreadable or a value is invalid.
        """
        if self.use_dotenv and load_dotenv(find_dotenv(usecwd=True)):
            logger.debug("Loaded environment from .env")

        config_path = config_path or self.env.get(f"{ENV_PREFIX}CONFIG")
        data: Dict[str, Any] = {}
        if config_path:
            data = self.parse(config_path)

        env_values = self._from_env()
        credentials = env_values.pop('credentials', None)
        data.update(env_values)
        if credentials:
            data['credentials'] = {**(data.get('credentials') or {}), **credentials}

        try:
            return Settings(**data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def parse(self, config_path: str) -> Dict[str, Any]:
        """
        Parses a config file from a path.

        :param config_path: Path to the config file.
        :return: Raw configuration mapping.
        """
        try:
            with open(config_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e
        logger.debug("Loaded config file %s", config_path)
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Dict[str, Any]:
        """
        Parses YAML configuration content.

        :param content: YAML content.
        :return: Raw configuration mapping.
        """
        try:
            data = yaml.safe_load(content)
        except (yaml.YAMLError, ValueError) as e:
            # Bad timestamps such as 2020-13-45 surface as ValueError
            raise ConfigError(f"Invalid YAML in config: {e}") from e
        if not data:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping")

        credentials = data.get('credentials')
        if credentials is not None and not isinstance(credentials, dict):
            raise ConfigError("'credentials' must be a mapping")

        # Digests and tags such as 3.13 come back from YAML as non-strings
        overrides = data.get('overrides') or {}
        if not isinstance(overrides, dict):
            raise ConfigError("'overrides' must be a mapping")
        data['overrides'] = {str(k): str(v) for k, v in overrides.items()}
        return data

    def _from_env(self) -> Dict[str, Any]:
        """
        Collects DFPIN_* environment variables.

        :return: Configuration keys set from the environment.
        """
        env = self.env
        values: Dict[str, Any] = {}

        if env.get(f"{ENV_PREFIX}TIMEOUT"):
            values['timeout'] = env[f"{ENV_PREFIX}TIMEOUT"]
        if env.get(f"{ENV_PREFIX}RETRIES"):
            values['retries'] = env[f"{ENV_PREFIX}RETRIES"]
        if env.get(f"{ENV_PREFIX}INSECURE_REGISTRIES"):
            values['insecure_registries'] = [
                r.strip() for r in env[f"{ENV_PREFIX}INSECURE_REGISTRIES"].split(',') if r.strip()
            ]

        username = env.get(f"{ENV_PREFIX}USERNAME")
        password = env.get(f"{ENV_PREFIX}PASSWORD")
        if username and password:
            registry = env.get(f"{ENV_PREFIX}REGISTRY", "index.docker.io")
            values['credentials'] = {registry: {'username': username, 'password': password}}

        return values
