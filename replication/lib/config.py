"""Replication configuration.

Two layers, both validated with Pydantic v2:

- ReplicationOptions: per-dump/per-load options (the ``WITH (...)`` clause
  of a REPL DUMP / REPL LOAD command)
- ReplicationSettings: process-wide settings loaded from ``REPL_*``
  environment variables or a ``.env`` file

Options can also come from a YAML file:

    include_external_tables: true
    external_table_base_dir: ${REPLICA_NN}/replica_external_base
    metadata_only: false
    incremental_scope: all_external
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from replication.lib.errors import ConfigurationError, EncodingError
from replication.lib.location import DEFAULT_FS, canonicalize
from replication.lib.manifest import IncrementalScope

logger = logging.getLogger(__name__)

__all__ = [
    "INCLUDE_EXTERNAL_TABLES_KEY",
    "EXTERNAL_TABLE_BASE_DIR_KEY",
    "METADATA_ONLY_KEY",
    "INCREMENTAL_SCOPE_KEY",
    "ReplicationOptions",
    "ReplicationSettings",
    "load_options_from_yaml",
]

INCLUDE_EXTERNAL_TABLES_KEY = "hive.repl.include.external.tables"
EXTERNAL_TABLE_BASE_DIR_KEY = "hive.repl.replica.external.table.base.dir"
METADATA_ONLY_KEY = "hive.repl.dump.metadata.only"
INCREMENTAL_SCOPE_KEY = "hive.repl.external.tables.incremental.scope"

_WITH_CLAUSE_FIELDS = {
    INCLUDE_EXTERNAL_TABLES_KEY: "include_external_tables",
    EXTERNAL_TABLE_BASE_DIR_KEY: "external_table_base_dir",
    METADATA_ONLY_KEY: "metadata_only",
    INCREMENTAL_SCOPE_KEY: "incremental_scope",
}

_TRUE = ("true", "1", "yes", "on")
_FALSE = ("false", "0", "no", "off")


def _parse_bool(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return value


class ReplicationOptions(BaseModel):
    """Options recognized by dump and load.

    Example:
        >>> options = ReplicationOptions.from_with_clause({
        ...     "hive.repl.include.external.tables": "true",
        ...     "hive.repl.replica.external.table.base.dir": "hdfs://replica:8020/ext",
        ... })
        >>> options.include_external_tables
        True
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_external_tables: bool = Field(
        default=False, description="Write the external table manifest and replicate external tables"
    )
    external_table_base_dir: Optional[str] = Field(
        default=None, description="Replica base directory external locations are rebased under"
    )
    metadata_only: bool = Field(default=False, description="Dump metadata events only (no DML events)")
    incremental_scope: IncrementalScope = Field(
        default=IncrementalScope.ALL_EXTERNAL,
        description="Which external tables an incremental manifest lists",
    )
    default_fs: str = Field(default=DEFAULT_FS, description="Filesystem for scheme-less locations")

    @field_validator("include_external_tables", "metadata_only", mode="before")
    @classmethod
    def parse_bool_strings(cls, v: Any) -> Any:
        return _parse_bool(v)

    @field_validator("incremental_scope", mode="before")
    @classmethod
    def parse_scope(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("external_table_base_dir")
    @classmethod
    def validate_base_dir(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        v = v.strip()
        if "://" not in v and not v.startswith("/"):
            raise ValueError("external_table_base_dir must be an absolute path or URI")
        return v

    def resolved_base_dir(self) -> Optional[str]:
        """The base directory qualified with ``default_fs``."""
        if not self.external_table_base_dir:
            return None
        try:
            return canonicalize(self.external_table_base_dir, self.default_fs)
        except EncodingError as exc:
            raise ConfigurationError(
                "Invalid external table base directory",
                field="external_table_base_dir",
                value=self.external_table_base_dir,
            ) from exc

    def merged(self, **overrides: Any) -> "ReplicationOptions":
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return ReplicationOptions.create(data)

    @classmethod
    def create(cls, data: Mapping[str, Any]) -> "ReplicationOptions":
        """Validate options, raising ConfigurationError on bad input."""
        try:
            return cls(**dict(data))
        except ValidationError as exc:
            issues = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
            raise ConfigurationError("Invalid replication options", issues=issues) from exc

    @classmethod
    def from_with_clause(
        cls,
        clause: Mapping[str, Any],
        base: Optional["ReplicationOptions"] = None,
    ) -> "ReplicationOptions":
        """Build options from ``'key'='value'`` pairs of a WITH clause.

        Unknown keys are ignored with a warning; field names are accepted
        as keys too.
        """
        data: Dict[str, Any] = base.model_dump() if base else {}
        for key, value in clause.items():
            name = key.strip().strip("'\"")
            field_name = _WITH_CLAUSE_FIELDS.get(name, name)
            if field_name not in cls.model_fields:
                logger.warning("Ignoring unknown replication option '%s'", name)
                continue
            data[field_name] = value.strip().strip("'\"") if isinstance(value, str) else value
        return cls.create(data)


class ReplicationSettings(BaseSettings):
    """Environment-based replication settings using pydantic-settings.

    Automatically loads from environment variables with REPL_ prefix.

    Example:
        >>> # REPL_DUMP_BASE=hdfs://primary:8020/repl/dumps
        >>> # REPL_INCLUDE_EXTERNAL_TABLES=true
        >>> settings = ReplicationSettings()
        >>> settings.to_options().include_external_tables
        True
    """

    dump_base: str = Field(default="./repl_dumps", description="Directory new dumps are created under")
    state_dir: str = Field(default=".state", description="Directory for watermark checkpoints")
    lock_dir: Optional[str] = Field(default=None, description="Directory for cross-process database locks")
    lock_timeout: float = Field(default=30.0, ge=0.0, description="Seconds to wait for a database lock")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    include_external_tables: bool = Field(default=False)
    external_table_base_dir: Optional[str] = Field(default=None)
    metadata_only: bool = Field(default=False)
    incremental_scope: IncrementalScope = Field(default=IncrementalScope.ALL_EXTERNAL)
    default_fs: str = Field(default=DEFAULT_FS)

    model_config = SettingsConfigDict(
        env_prefix="REPL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    def to_options(self) -> ReplicationOptions:
        return ReplicationOptions.create(
            {
                "include_external_tables": self.include_external_tables,
                "external_table_base_dir": self.external_table_base_dir,
                "metadata_only": self.metadata_only,
                "incremental_scope": self.incremental_scope,
                "default_fs": self.default_fs,
            }
        )


_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _reference_values(env_file: Optional[Union[str, Path]]) -> Dict[str, str]:
    """Variables ``${NAME}`` may refer to: the process environment over ``env_file``."""
    values: Dict[str, str] = {}
    if env_file and Path(env_file).is_file():
        values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        logger.debug("Read %d variables from %s", len(values), env_file)
    values.update(os.environ)
    return values


def _resolve_references(value: Any, variables: Mapping[str, str], path: Path) -> Any:
    if isinstance(value, dict):
        return {k: _resolve_references(v, variables, path) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_references(v, variables, path) for v in value]
    if not isinstance(value, str):
        return value

    def lookup(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in variables:
            raise ConfigurationError(
                f"{path} refers to ${{{name}}}, which is not set",
                field=name,
                suggestion=f"Export {name} or define it in the .env file",
            )
        return variables[name]

    return _REFERENCE.sub(lookup, value)


def load_options_from_yaml(
    path: Union[str, Path],
    base: Optional[ReplicationOptions] = None,
    env_file: Optional[Union[str, Path]] = ".env",
) -> ReplicationOptions:
    """Load ReplicationOptions from a YAML file.

    The options may sit at the top level or under a ``replication:`` key,
    and may use either field names or WITH-clause keys. ``${NAME}`` in any
    value is replaced from the environment, falling back to ``env_file``.

    Raises:
        ConfigurationError: unreadable file, bad layout or an unset ``${NAME}``
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Config file not found: {path}", field="path") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    section = config.get("replication", config)
    if not isinstance(section, dict):
        raise ConfigurationError("'replication' must be a mapping", field="replication")

    section = _resolve_references(section, _reference_values(env_file), path)
    return ReplicationOptions.from_with_clause(section, base=base)
