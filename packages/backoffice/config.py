"""Ingest configuration: the deployment-specific knobs of the pipeline.

Things that only make sense for one business (cardholder overrides on the
statement, the catalog's product-family naming scheme, smart-mapping
thresholds) live in a JSON document validated by :class:`IngestConfig`.
The packaged default is ``seeds/ingest_config.v1.json``; set
``BACKOFFICE_CONFIG`` to point at another file.
"""

from __future__ import annotations

import json
import os
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_ENV_VAR = "BACKOFFICE_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "seeds" / "ingest_config.v1.json"


class StatementConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Uppercase holder-name token -> card digits to report when no number is printed.
    card_holder_overrides: dict[str, str] = Field(default_factory=dict)

    @field_validator("card_holder_overrides")
    @classmethod
    def _upper_keys(cls, v: dict[str, str]) -> dict[str, str]:
        return {k.strip().upper(): str(d).strip() for k, d in v.items() if k.strip()}


class AliasRule(BaseModel):
    """Rewrite a short product-family name into the catalog's naming scheme.

    ``pattern`` is matched against the free-text name (case-insensitively);
    its named groups fill ``template``. When a search for the rewritten name
    returns nothing, ``fallback_template`` (if any) is tried next.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: str
    pattern: str
    template: str
    fallback_template: str | None = None

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, v: str) -> str:
        try:
            re.compile(v)
        except re.error as exc:
            raise ValueError(f"invalid alias pattern {v!r}: {exc}") from exc
        return v


class MatchingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_variant_marker: str = "Regular"
    aliases: list[AliasRule] = Field(default_factory=list)
    # Learned mappings at/above this confidence skip the catalog search.
    trusted_mapping_confidence: int = Field(default=85, ge=0, le=100)


class MappingsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_per_type: int = Field(default=500, ge=1)
    default_max_results: int = Field(default=5, ge=1)
    default_confidence: int = Field(default=80, ge=0, le=100)
    auto_confirm_confidence: int = Field(default=85, ge=0, le=100)
    auto_confirm_usage: int = Field(default=3, ge=0)


class IngestConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    statement: StatementConfig = Field(default_factory=StatementConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    mappings: MappingsConfig = Field(default_factory=MappingsConfig)


def load_ingest_config(path: str | os.PathLike[str] | None = None) -> IngestConfig:
    """Read and validate an ingest config file.

    ``path`` wins, then ``$BACKOFFICE_CONFIG``, then the packaged default.
    """

    p = Path(path or os.getenv(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return IngestConfig.model_validate(data)


@lru_cache(maxsize=1)
def default_ingest_config() -> IngestConfig:
    """The process-wide config (``$BACKOFFICE_CONFIG`` or the packaged file), parsed once.

    Call ``default_ingest_config.cache_clear()`` after changing the env var.
    """

    return load_ingest_config()


__all__ = [
    "AliasRule",
    "CONFIG_ENV_VAR",
    "IngestConfig",
    "MappingsConfig",
    "MatchingConfig",
    "StatementConfig",
    "default_ingest_config",
    "load_ingest_config",
]
