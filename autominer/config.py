"""Mining configuration: YAML loading, hour parsing and validation."""

from dataclasses import dataclass, field, fields

import yaml

from .calculator import MAX_OPERATION_SIZE
from .errors import ConfigError
from .models import Strategy

DEFAULT_CHECK_INTERVAL = 30.0
DEFAULT_GAS_MULTIPLIER = 1.5
DEFAULT_MAX_RETRIES = 3


@dataclass
class MiningConfig:
    strategy: Strategy = Strategy.AUTO
    max_cost_per_unit: float | None = None   # fiat per whole yield unit
    min_efficiency: float | None = None      # percent
    schedule_hours: frozenset[int] = field(default_factory=frozenset)
    daily_budget: int | None = None          # wei
    target_yield: int | None = None          # base units of the yield token
    check_interval: float = DEFAULT_CHECK_INTERVAL
    max_size: int = MAX_OPERATION_SIZE       # bytes
    max_retries: int = DEFAULT_MAX_RETRIES
    gas_multiplier: float = DEFAULT_GAS_MULTIPLIER
    escalate: bool = True

    def validate(self) -> "MiningConfig":
        """Raise ConfigError on any invalid option. Returns self for chaining."""
        self.strategy = Strategy.parse(self.strategy)
        self.schedule_hours = frozenset(self.schedule_hours or ())

        if self.max_cost_per_unit is not None and self.max_cost_per_unit < 0:
            raise ConfigError(f"max_cost_per_unit must be >= 0, got {self.max_cost_per_unit}")
        if self.min_efficiency is not None and not 0 <= self.min_efficiency <= 100:
            raise ConfigError(f"min_efficiency must be within 0-100, got {self.min_efficiency}")
        bad_hours = sorted(h for h in self.schedule_hours if not 0 <= h <= 23)
        if bad_hours:
            raise ConfigError(f"schedule hours must be within 0-23, got {bad_hours}")
        if self.daily_budget is not None and self.daily_budget <= 0:
            raise ConfigError(f"daily_budget must be > 0, got {self.daily_budget}")
        if self.target_yield is not None and self.target_yield <= 0:
            raise ConfigError(f"target_yield must be > 0, got {self.target_yield}")
        if self.check_interval <= 0:
            raise ConfigError(f"check_interval must be > 0, got {self.check_interval}")
        if not 1 <= self.max_size <= MAX_OPERATION_SIZE:
            raise ConfigError(f"max_size must be within 1-{MAX_OPERATION_SIZE} bytes, got {self.max_size}")
        if self.max_retries < 1:
            raise ConfigError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.gas_multiplier <= 0:
            raise ConfigError(f"gas_multiplier must be > 0, got {self.gas_multiplier}")
        return self

    @classmethod
    def from_dict(cls, raw: dict) -> "MiningConfig":
        """Build from the `mining:` section of a config file. Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown mining option(s): {', '.join(unknown)}")
        values = dict(raw)
        hours = values.get("schedule_hours")
        if isinstance(hours, str):
            values["schedule_hours"] = frozenset(parse_hours(hours))
        elif hours is not None:
            values["schedule_hours"] = frozenset(int(h) for h in hours)
        try:
            return cls(**values).validate()
        except TypeError as e:
            raise ConfigError(str(e)) from e


def load_config(path: str | None) -> dict:
    if path is None:
        return {}
    try:
        with open(path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e


def parse_hours(ranges: str) -> list[int]:
    """Expand "2-6,14-18" into [2, 3, 4, 5, 6, 14, 15, 16, 17, 18].

    Hours outside 0-23 are dropped.
    """
    hours = set()
    for part in ranges.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = (int(h.strip()) for h in part.split("-", 1))
                hours.update(h for h in range(start, end + 1) if 0 <= h <= 23)
            else:
                h = int(part)
                if 0 <= h <= 23:
                    hours.add(h)
        except ValueError:
            raise ConfigError(f"Invalid hour range: {part!r}") from None
    return sorted(hours)
