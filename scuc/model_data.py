"""Representations of the grid data used as optimization model input."""

from __future__ import annotations

from typing import NamedTuple, Optional, Iterable, Iterator

import numpy as np
from ordered_set import OrderedSet

from .errors import ModelConstructionError


class CostSegment(NamedTuple):
    """A piece of a production cost curve: `length` MW at `slope` $/MW."""
    length: float
    slope: float


class StartupStage(NamedTuple):
    """A startup cost applying once a unit has been off for `delay` hours."""
    delay: int
    cost: float


class LineData(NamedTuple):
    name: str
    from_bus: str
    to_bus: str
    susceptance: float
    normal_limit: float
    emergency_limit: float
    flow_penalty: float
    reactance: Optional[float] = None


class ThermalGenData(NamedTuple):
    name: str
    bus: str

    p_min: float
    p_max: float
    ramp_up: float
    ramp_down: float
    startup_limit: float
    shutdown_limit: float
    min_uptime: int
    min_downtime: int
    no_load_cost: float

    cost_segments: tuple[CostSegment, ...]
    startup_stages: tuple[StartupStage, ...]

    # positive: on for that many hours, negative: off for that many hours
    initial_status: int
    initial_power: float

    must_run: bool = False
    reserve_names: tuple[str, ...] = ()
    commitment_status: tuple[Optional[int], ...] = ()

    @property
    def reserve_eligible(self) -> bool:
        return bool(self.reserve_names)

    @property
    def initially_on(self) -> bool:
        return self.initial_status > 0

    def was_on(self, t: int) -> int:
        """Whether the unit was on at hour `t` < 0 before the horizon began.

        An initially-off unit must have been on in the hour before it was
        switched off; we count every hour further back as on as well, which
        only ever matters for windows that also contain that hour.
        """
        if t >= 0:
            raise ModelConstructionError(
                f"Hour {t} is not before the start of the horizon!")

        if self.initial_status > 0:
            return 1

        return int(-t > -self.initial_status)

    def fixed_commitment(self, t: int) -> Optional[int]:
        if not self.commitment_status:
            return None

        return self.commitment_status[t]


class ProfiledGenData(NamedTuple):
    name: str
    bus: str
    p_min: np.ndarray
    p_max: np.ndarray
    cost: float


class PriceSensitiveLoad(NamedTuple):
    name: str
    bus: str
    demand: np.ndarray
    revenue: np.ndarray


class ReserveRequirement(NamedTuple):
    name: str
    amount: np.ndarray

    # non-positive penalties disable the shortfall variable
    shortfall_penalty: float = -1.

    @property
    def allows_shortfall(self) -> bool:
        return self.shortfall_penalty > 0

    def is_active(self, t: int) -> bool:
        return self.amount[t] > 0


class ContingencyPair(NamedTuple):
    """An N-1 scenario: line `k` is out of service, line `l` is monitored."""
    k: int
    l: int


def _freeze(array: Iterable[float]) -> np.ndarray:
    array = np.array(array, dtype=float)
    array.flags.writeable = False

    return array


class UCInputData:
    """The fully normalized, read-only input of a unit commitment model.

    Instances are created once by the input loader and are never modified
    afterwards; every attribute assignment after construction raises, and
    all numeric arrays are flagged as non-writeable.

    Attributes
    ----------
    T       The number of hours in the time horizon.
    buses   Bus names in index order; `ref_bus` is the angle reference.
    lines   Line names in index order, see `line_data` for their properties.

    system_demand   Total fixed demand at each hour, shape (T, ).
    nodal_demand    Fixed demand at each bus and hour, shape (T, buses).

    ptdf    Flow on each line per MW injected at each bus, shape (L, B).
    lodf    Change of flow on each line per MW flowing on each outaged line
            before its outage, shape (L, L).
    """

    def __init__(self,
                 T: int, ref_bus: str, buses: Iterable[str],
                 lines: Iterable[LineData],
                 thermal_gens: Iterable[ThermalGenData],
                 profiled_gens: Iterable[ProfiledGenData],
                 psl: Iterable[PriceSensitiveLoad],
                 reserves: Iterable[ReserveRequirement],
                 nodal_demand: np.ndarray,
                 ptdf: np.ndarray, lodf: np.ndarray,
                 contingency_lines: Iterable[str] = (),
                 relevant_pairs: Iterable[ContingencyPair] = (),
                 islanding_lines: Iterable[str] = (),
                 curtail_penalty: Optional[float] = None) -> None:
        self.T = int(T)
        self.ref_bus = ref_bus
        self.buses = OrderedSet(buses)

        line_list = list(lines)
        self.lines = OrderedSet(line.name for line in line_list)
        self.line_data = {line.name: line for line in line_list}

        self.thermal_gens = tuple(thermal_gens)
        self.profiled_gens = tuple(profiled_gens)
        self.psl = tuple(psl)
        self.reserves = tuple(reserves)

        self.nodal_demand = _freeze(nodal_demand).reshape(
            self.T, len(self.buses))
        self.system_demand = _freeze(self.nodal_demand.sum(axis=1))

        self.ptdf = _freeze(ptdf).reshape(len(self.lines), len(self.buses))
        self.lodf = _freeze(lodf).reshape(len(self.lines), len(self.lines))

        self.contingency_lines = tuple(contingency_lines)
        self.relevant_pairs = tuple(relevant_pairs)
        self.islanding_lines = frozenset(islanding_lines)
        self.curtail_penalty = curtail_penalty

        self.thermal_at_bus = {b: [] for b in self.buses}
        for gi, gen in enumerate(self.thermal_gens):
            self.thermal_at_bus[gen.bus].append(gi)

        self.profiled_at_bus = {b: [] for b in self.buses}
        for pi, gen in enumerate(self.profiled_gens):
            self.profiled_at_bus[gen.bus].append(pi)

        self.psl_at_bus = {b: [] for b in self.buses}
        for li, load in enumerate(self.psl):
            self.psl_at_bus[load.bus].append(li)

        self._frozen = True

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"Cannot set `{name}`: unit commitment "
                                 "input data is read-only!")

        super().__setattr__(name, value)

    def bus_index(self, bus: str) -> int:
        return self.buses.index(bus)

    def line_index(self, line: str) -> int:
        return self.lines.index(line)

    def line(self, l: int) -> LineData:
        return self.line_data[self.lines[l]]

    def iter_lines(self) -> Iterator[tuple[int, LineData]]:
        for l, line_name in enumerate(self.lines):
            yield l, self.line_data[line_name]

    def ptdf_at(self, l: int, b: int) -> float:
        return float(self.ptdf[l, b])

    def lodf_at(self, l: int, k: int) -> float:
        return float(self.lodf[l, k])

    def reserve_providers(self, q: int) -> list[int]:
        """Thermal generators eligible to provide reserve requirement `q`."""
        return [gi for gi, gen in enumerate(self.thermal_gens)
                if self.reserves[q].name in gen.reserve_names]
