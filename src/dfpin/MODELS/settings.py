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
Models for resolver configuration.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, Field

class RegistryCredentials(BaseModel):
    """
    Username and password (or access token) for a single registry.
    """
    username: str
    password: str

class Settings(BaseModel):
    """
    Configuration for digest resolution.
    """
    # Network
    timeout: float = Field(default=30.0, gt=0)
    retries: int = Field(default=3, ge=1)
    insecure_registries: List[str] = []

    # Auth, keyed by registry host (e.g. 'index.docker.io', 'ghcr.io')
    credentials: Dict[str, RegistryCredentials] = {}

    # Pinned digests that bypass the registry, {reference: digest}
    overrides: Dict[str, str] = {}

    def credentials_for(self, registry: str) -> Optional[RegistryCredentials]:
        """
        Looks up credentials for a registry, treating Docker Hub aliases as one host.

        :param registry: Registry host as found in an image reference.
        :return: The credentials, or None if none are configured.
        """
        if registry in self.credentials:
            return self.credentials[registry]
        if registry == "index.docker.io":
            for alias in ("docker.io", "registry-1.docker.io"):
                if alias in self.credentials:
                    return self.credentials[alias]
        return None
