"""Pydantic v2 models for procwire.yaml configuration."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

_IMPORT_PATH_RE = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_][\w.]*$")


class WorkerConfig(BaseModel):
    """How worker processes are started and stopped."""

    model_config = ConfigDict(extra="forbid")

    python: str | None = Field(
        default=None,
        description="Interpreter used for workers (defaults to the host's own)",
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for every worker",
    )
    pythonpath: list[str] = Field(
        default_factory=list,
        description="Directories prepended to the worker's PYTHONPATH",
    )
    transport: str | None = Field(
        default=None,
        description=(
            "'module:attr' factory for one-argument entry points "
            "(defaults to the process-wide default, zmq:Context)"
        ),
    )
    isolate_stdout: bool = Field(
        default=True,
        description="Send the entry point's print() output to stderr",
    )
    read_chunk_size: int = Field(
        default=65_536,
        ge=1,
        description="Maximum bytes read from worker stdout per chunk",
    )
    stream_limit: int = Field(
        default=1_048_576,
        ge=1,
        description="Buffer limit of the asyncio stdout stream",
    )
    shutdown_wait: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait after closing stdin before SIGTERM",
    )
    sigterm_wait: float = Field(
        default=3.0,
        ge=0,
        description="Seconds to wait after SIGTERM before SIGKILL",
    )

    @field_validator("transport")
    @classmethod
    def _check_transport(cls, value: str | None) -> str | None:
        if value is not None and not _IMPORT_PATH_RE.match(value):
            msg = f"Invalid transport '{value}' — expected 'module:attribute'"
            raise ValueError(msg)
        return value


class TraceConfig(BaseModel):
    """Settings for the JSONL message trace."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(
        default=False,
        description="Whether to record a trace of worker traffic",
    )
    directory: str = Field(
        default="traces",
        description="Directory for trace files",
    )


class ProcwireConfig(BaseModel):
    """Top-level procwire.yaml configuration."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1", description="Config schema version")
    worker: WorkerConfig = Field(
        default_factory=WorkerConfig,
        description="Worker process settings",
    )
    trace: TraceConfig = Field(
        default_factory=TraceConfig,
        description="Trace recording settings",
    )
