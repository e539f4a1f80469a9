"""
Interface to configuration as persisted in .yaml file.
"""
from __future__ import annotations

from logging import Logger
from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel, model_validator

from ..core import AuthMode, Session, SessionConfig

__all__ = [
    "Config",
    "InstanceConfig",
]


class InstanceConfig(BaseModel):
    """
    Encapsulates info for a server instance.
    """

    host: str
    token: str | None = None
    namespace: str | None = None
    auth_mode: AuthMode = AuthMode.SECRET
    keepalive_timeout: float | None = None

    def get_session_config(self, *, debug: bool = False) -> SessionConfig:
        options = {
            "host": self.host,
            "namespace": self.namespace,
            "auth_mode": self.auth_mode,
            "keepalive_timeout": self.keepalive_timeout,
            "debug": debug,
        }
        return SessionConfig.model_validate(
            {key: value for key, value in options.items() if value is not None}
        )

    def create_session(self, *, logger: Logger, debug: bool = False) -> Session:
        """
        Get session from this instance's fields.
        """
        return Session(
            self.get_session_config(debug=debug),
            token=self.token,
            logger=logger,
        )


class Config(BaseModel):
    """
    Encapsulates configuration for use in tools.
    """

    default_instance: str | None = None
    """
    Instance to use if none is selected.
    """

    instances: dict[str, InstanceConfig]
    """
    Mapping of instance names to configs.
    """

    @model_validator(mode="after")
    def validate_default_instance(self) -> Self:
        name = self.default_instance
        if name and name not in self.instances:
            raise ValueError(f"default instance '{name}' is not configured")
        return self

    def get_instance(self, name: str | None) -> InstanceConfig | None:
        """
        Get instance by name, or the default instance if no name given.
        """
        name = name or self.default_instance
        return self.instances.get(name) if name else None

    @classmethod
    def load_yaml(cls, file: Path) -> Self:
        """
        Load config from .yaml file, which must contain a mapping.
        """
        data = yaml.safe_load(file.read_text())

        if not isinstance(data, dict):
            raise ValueError(f"expected mapping in '{file}', got: {data!r}")

        return cls.model_validate(data)

    def dump_yaml(self, file: Path):
        """
        Write config to .yaml file, omitting unset fields.
        """
        data = self.model_dump(mode="json", exclude_none=True)
        file.write_text(yaml.safe_dump(data, sort_keys=False))
