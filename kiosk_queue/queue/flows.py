"""Transaction flow definitions and their resolution into window routes."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Protocol

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from .exceptions import FlowNotFoundError
from .models import FlowStep

logger = logging.getLogger(__name__)


class TransactionStep(BaseModel):
    """One step of a transaction; window 0 marks a non-dispensing step."""

    step_number: int = Field(..., ge=1)
    step_name: str = Field(..., min_length=1)
    window_number: int = Field(..., ge=0)
    description: str = ""


class TransactionFlow(BaseModel):
    """Definition of a transaction type offered at the kiosk."""

    name: str = Field(..., min_length=1)
    prefix: str = Field(..., min_length=1, max_length=3)
    description: str = ""
    is_active: bool = True
    steps: list[TransactionStep] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("prefix")
    @classmethod
    def _normalise_prefix(cls, value: str) -> str:
        prefix = value.strip().upper()
        if not prefix.isalpha():
            raise ValueError("prefix must contain letters only")
        return prefix

    @model_validator(mode="after")
    def _unique_step_numbers(self) -> "TransactionFlow":
        numbers = [step.step_number for step in self.steps]
        if len(numbers) != len(set(numbers)):
            raise ValueError(f"duplicate step numbers in flow '{self.name}'")
        return self


_FLOW_LIST = TypeAdapter(list[TransactionFlow])


class FlowDefinitionSource(Protocol):
    def get_active_flow(self, transaction_name: str) -> TransactionFlow | None:
        ...


class FlowCatalog:
    """In-memory flow definition store keyed by transaction name."""

    def __init__(self, flows: Iterable[TransactionFlow] = ()) -> None:
        self._flows: dict[str, TransactionFlow] = {}
        prefixes: dict[str, str] = {}
        for flow in flows:
            if flow.name in self._flows:
                raise ValueError(f"Duplicate transaction flow '{flow.name}'")
            owner = prefixes.get(flow.prefix)
            if owner is not None:
                raise ValueError(f"Prefix '{flow.prefix}' is used by both '{owner}' and '{flow.name}'")
            prefixes[flow.prefix] = flow.name
            self._flows[flow.name] = flow

    @classmethod
    def from_data(cls, data: Any) -> "FlowCatalog":
        if isinstance(data, dict):
            data = data.get("flows", [])
        return cls(_FLOW_LIST.validate_python(data))

    @classmethod
    def from_file(cls, path: str | Path) -> "FlowCatalog":
        source = Path(path)
        catalog = cls.from_data(json.loads(source.read_text(encoding="utf-8")))
        logger.info("Loaded %d transaction flows from %s", len(catalog._flows), source)
        return catalog

    def get_active_flow(self, transaction_name: str) -> TransactionFlow | None:
        flow = self._flows.get(transaction_name.strip())
        if flow is None or not flow.is_active:
            return None
        return flow

    def list_active(self) -> list[TransactionFlow]:
        return [flow for flow in self._flows.values() if flow.is_active]


@dataclass(frozen=True, slots=True)
class ResolvedFlow:
    """Transaction identity plus the windows a new ticket must traverse."""

    transaction_name: str
    prefix: str
    steps: tuple[FlowStep, ...]

    @property
    def first_window(self) -> int:
        return self.steps[0].window_number


def build_window_route(definition: TransactionFlow) -> tuple[FlowStep, ...]:
    """Order the dispensing steps of a definition and number them from 1.

    Steps bound to window 0 are dropped; the remaining steps keep the order of
    their ``step_number`` and are renumbered so step orders stay contiguous.
    """

    dispensing = sorted(
        (step for step in definition.steps if step.window_number > 0),
        key=lambda step: step.step_number,
    )
    return tuple(
        FlowStep(window_number=step.window_number, step_order=index)
        for index, step in enumerate(dispensing, start=1)
    )


class FlowResolver:
    """Resolve a transaction name into its window route."""

    def __init__(self, source: FlowDefinitionSource) -> None:
        self._source = source

    def resolve(self, transaction_name: str) -> ResolvedFlow:
        definition = self._source.get_active_flow(transaction_name)
        if definition is None:
            raise FlowNotFoundError(f"Transaction '{transaction_name}' not found")

        steps = build_window_route(definition)
        if not steps:
            raise FlowNotFoundError(f"Transaction '{transaction_name}' has no window steps")
        return ResolvedFlow(transaction_name=definition.name, prefix=definition.prefix, steps=steps)
