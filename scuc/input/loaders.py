"""Loading power grid documents into a normalized unit commitment input.

Grids are described by a single JSON document whose top-level fields list
the buses, transmission lines, generators, price-sensitive loads, reserve
requirements and contingencies of the system. The `JsonGridLoader` below
parses each of these into the immutable records of `scuc.model_data`,
computes the network sensitivity factors of the grid, and narrows the listed
contingencies down to the (outaged line, monitored line) pairs which need
to be enforced by the model.

Any time series field can be given as null (all zeros), as a scalar (the same
value at every hour), or as a list with one value per hour of the horizon.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..config import ModelConfig
from ..errors import (InputFormatError, DimensionMismatchError,
                      ContingencySingularityError)
from ..model_data import (CostSegment, StartupStage, LineData, ThermalGenData,
                          ProfiledGenData, PriceSensitiveLoad,
                          ReserveRequirement, ContingencyPair, UCInputData)
from ..ptdf_utils import calculate_network_factors

logger = logging.getLogger(__name__)

# ramping limit assumed for generators which do not declare one
UNLIMITED_RAMP = 9999.


def is_number(value: Any) -> bool:
    return (isinstance(value, (int, float)) and not isinstance(value, bool)
            and math.isfinite(value))


def get_timeseries(value: Any, T: int, name: str) -> np.ndarray:
    """Reads a time series given as null, a number, or a list of T numbers."""

    if value is None:
        series = np.zeros(T)

    elif is_number(value):
        series = np.full(T, float(value))

    elif isinstance(value, list):
        if len(value) != T:
            raise DimensionMismatchError(name, T, len(value))

        if not all(is_number(v) for v in value):
            raise InputFormatError(
                f"Time series `{name}` must only contain numbers!", name)

        series = np.array(value, dtype=float)

    else:
        raise InputFormatError(f"Time series `{name}` must be null, a number, "
                               f"or a list of numbers!", name)

    series.flags.writeable = False
    return series


def _get_number(record: dict, key: str, name: str,
                default: Optional[float] = None) -> float:
    value = record.get(key)

    if value is None:
        if default is None:
            raise InputFormatError(f"Missing required field `{key}` "
                                   f"for `{name}`!", f"{name}/{key}")

        return default

    if not is_number(value):
        raise InputFormatError(f"Field `{key}` of `{name}` must be a number, "
                               f"found `{value!r}`!", f"{name}/{key}")

    return float(value)


def _get_int(record: dict, key: str, name: str,
             default: Optional[int] = None) -> int:
    value = _get_number(record, key, name, default)

    if value != int(value):
        raise InputFormatError(f"Field `{key}` of `{name}` must be a whole "
                               f"number of hours, found `{value}`!",
                               f"{name}/{key}")

    return int(value)


def _get_section(data: dict, key: str) -> dict:
    section = data.get(key)

    if section is None:
        return dict()

    if not isinstance(section, dict):
        raise InputFormatError(f"Top-level field `{key}` must map "
                               f"names to records!", key)

    return section



def _get_record(record: Any, name: str) -> dict:
    """A named entry of a top-level section; null stands for an empty one."""

    if record is None:
        return dict()

    if not isinstance(record, dict):
        raise InputFormatError(f"Entry `{name}` must be a JSON object, "
                               f"found `{record!r}`!", name)

    return record


def _reserve_name(name: str, res_info: Any) -> str:
    # older documents list a single spinning reserve amount
    if isinstance(res_info, dict):
        return name

    return name.split(' (')[0].lower()


class JsonGridLoader:
    """Parses a JSON grid document into an `UCInputData` instance.

    Args
    ----
        data        The decoded JSON document.
        config      Model settings providing the defaults for any line limits
                    and penalties missing from the document.

    """

    def __init__(self, data: dict, config: ModelConfig) -> None:
        if not isinstance(data, dict):
            raise InputFormatError("The input document must be a JSON object!")

        self.data = data
        self.config = config

        params = _get_section(data, 'Parameters')
        if 'Time horizon (h)' in params:
            self.T = _get_int(params, 'Time horizon (h)', 'Parameters')
        else:
            self.T = _get_int(params, 'Time (h)', 'Parameters')

        if self.T <= 0:
            raise InputFormatError("The time horizon must have at least "
                                   "one hour!", 'Parameters/Time horizon (h)')

        time_step = _get_int(params, 'Time step (min)', 'Parameters', 60)
        if time_step != 60:
            raise InputFormatError(
                f"Only hourly time steps are supported, found {time_step} "
                "minutes!", 'Parameters/Time step (min)'
                )

        if 'Power balance penalty ($/MW)' in params:
            self.curtail_penalty = _get_number(
                params, 'Power balance penalty ($/MW)', 'Parameters')
        else:
            self.curtail_penalty = config.curtail_penalty

        self.buses = list(_get_section(data, 'Buses'))
        if not self.buses:
            raise InputFormatError("The grid must have at least one bus!",
                                   'Buses')

        self.ref_bus = params.get('Reference bus', self.buses[0])
        if self.ref_bus not in self.buses:
            raise InputFormatError(
                f"Reference bus `{self.ref_bus}` is not one of the grid's "
                "buses!", 'Parameters/Reference bus'
                )

        self.reserve_names = [
            _reserve_name(name, res_info) for name, res_info in _get_section(
                data, 'Reserves').items()
            ]

    def _check_bus(self, bus: Any, name: str) -> str:
        if bus not in self.buses:
            raise InputFormatError(f"`{name}` is attached to unknown "
                                   f"bus `{bus}`!", f"{name}/Bus")

        return bus

    def parse_demand(self) -> np.ndarray:
        nodal_demand = np.zeros((self.T, len(self.buses)))

        for b, (bus, bus_info) in enumerate(
                _get_section(self.data, 'Buses').items()):
            bus_info = _get_record(bus_info, bus)

            nodal_demand[:, b] = get_timeseries(
                bus_info.get('Load (MW)'), self.T, f"{bus}/Load (MW)")

        return nodal_demand

    def parse_line(self, name: str, line_info: dict) -> LineData:
        """Read in a transmission line, filling in default limits."""

        from_bus = self._check_bus(line_info.get('Source bus'), name)
        to_bus = self._check_bus(line_info.get('Target bus'), name)

        if from_bus == to_bus:
            raise InputFormatError(f"Line `{name}` must connect two "
                                   f"different buses!", name)

        reactance = line_info.get('Reactance (ohms)')
        if reactance is not None:
            reactance = _get_number(line_info, 'Reactance (ohms)', name)

        if line_info.get('Susceptance (S)') is not None:
            susceptance = _get_number(line_info, 'Susceptance (S)', name)

        elif reactance is not None:
            if reactance == 0:
                raise InputFormatError(f"Line `{name}` has zero reactance!",
                                       f"{name}/Reactance (ohms)")

            susceptance = 1. / reactance

        else:
            raise InputFormatError(f"Line `{name}` needs either a reactance "
                                   "or a susceptance!", name)

        if susceptance == 0:
            raise InputFormatError(f"Line `{name}` has zero susceptance!",
                                   f"{name}/Susceptance (S)")

        normal_limit = _get_number(line_info, 'Normal flow limit (MW)', name,
                                   self.config.default_line_limit_mw)
        emergency_limit = _get_number(line_info, 'Emergency flow limit (MW)',
                                      name, normal_limit)
        flow_penalty = _get_number(line_info, 'Flow limit penalty ($/MW)',
                                   name, self.config.default_flow_penalty)

        return LineData(name, from_bus, to_bus, susceptance, normal_limit,
                        emergency_limit, flow_penalty, reactance)

    @staticmethod
    def parse_cost_curve(name: str,
                         gen_info: dict) -> tuple[float, float, float,
                                                  tuple[CostSegment, ...]]:
        """Turn cumulative (MW, $) curve points into marginal cost pieces."""

        points = gen_info.get('Production cost curve (MW)')
        costs = gen_info.get('Production cost curve ($)')

        if not isinstance(points, list) or not isinstance(costs, list):
            raise InputFormatError(
                f"Thermal generator `{name}` needs a production cost curve "
                "given as lists of points!", f"{name}/Production cost curve"
                )

        if not points or len(points) != len(costs):
            raise InputFormatError(
                f"Production cost curve of `{name}` must have the same "
                "positive number of MW points and $ values!",
                f"{name}/Production cost curve"
                )

        if not all(is_number(x) for x in points + costs):
            raise InputFormatError(
                f"Production cost curve of `{name}` must only contain "
                "numbers!", f"{name}/Production cost curve"
                )

        segments = list()
        for i in range(1, len(points)):
            length = float(points[i] - points[i - 1])

            if length < 0:
                raise InputFormatError(
                    f"Production cost curve of `{name}` has a segment of "
                    f"negative length between points {i - 1} and {i}!",
                    f"{name}/Production cost curve (MW)"
                    )

            slope = (costs[i] - costs[i - 1]) / length if length > 0 else 0.
            segments.append(CostSegment(length, float(slope)))

        return (float(points[0]), float(points[-1]), float(costs[0]),
                tuple(segments))

    @staticmethod
    def parse_startup_stages(name: str,
                             gen_info: dict) -> tuple[StartupStage, ...]:
        delays = gen_info.get('Startup delays (h)', [1])
        costs = gen_info.get('Startup costs ($)', [0.])

        if is_number(delays):
            delays = [delays]
        if is_number(costs):
            costs = [costs]

        if (not isinstance(delays, list) or not isinstance(costs, list)
                or not delays or len(delays) != len(costs)):
            raise InputFormatError(
                f"Startup delays and costs of `{name}` must be lists of "
                "the same positive length!", f"{name}/Startup delays (h)"
                )

        if not all(is_number(x) and x == int(x) and x >= 1 for x in delays):
            raise InputFormatError(
                f"Startup delays of `{name}` must be whole numbers of "
                "hours no smaller than one!", f"{name}/Startup delays (h)"
                )

        if any(d2 <= d1 for d1, d2 in zip(delays[:-1], delays[1:])):
            raise InputFormatError(
                f"Startup delays of `{name}` must be strictly increasing!",
                f"{name}/Startup delays (h)"
                )

        if not all(is_number(x) for x in costs):
            raise InputFormatError(f"Startup costs of `{name}` must be "
                                   "numbers!", f"{name}/Startup costs ($)")

        return tuple(StartupStage(int(d), float(c))
                     for d, c in zip(delays, costs))

    def parse_commitment_status(self, name: str,
                                gen_info: dict) -> tuple[Optional[int], ...]:
        status = gen_info.get('Commitment status')

        if status is None:
            return ()

        if not isinstance(status, list):
            raise InputFormatError(
                f"Commitment status of `{name}` must be a list!",
                f"{name}/Commitment status"
                )

        if len(status) != self.T:
            raise DimensionMismatchError(f"{name}/Commitment status",
                                         self.T, len(status))

        fixed = list()
        for value in status:
            if value is None:
                fixed.append(None)
            elif value in (0, 1):
                fixed.append(int(value))

            else:
                raise InputFormatError(
                    f"Commitment status of `{name}` must only contain null, "
                    f"true/false, or 0/1, found `{value!r}`!",
                    f"{name}/Commitment status"
                    )

        return tuple(fixed)

    def parse_reserve_eligibility(self, name: str,
                                  gen_info: dict) -> tuple[str, ...]:
        reserve_names = gen_info.get('Reserve eligibility')

        if reserve_names is None:
            if gen_info.get('Provides spinning reserves?', False):
                return ('spinning', )

            return ()

        if not isinstance(reserve_names, list):
            raise InputFormatError(
                f"Reserve eligibility of `{name}` must be a list of reserve "
                "names!", f"{name}/Reserve eligibility"
                )

        for res_name in reserve_names:
            if res_name not in self.reserve_names:
                raise InputFormatError(
                    f"`{name}` is eligible for unknown reserve "
                    f"`{res_name}`!", f"{name}/Reserve eligibility"
                    )

        return tuple(dict.fromkeys(reserve_names))

    def parse_thermal(self, name: str, gen_info: dict) -> ThermalGenData:
        """Read in a thermal generator's operating characteristics."""

        bus = self._check_bus(gen_info.get('Bus'), name)
        p_min, p_max, no_load_cost, segments = self.parse_cost_curve(
            name, gen_info)

        initial_status = _get_int(gen_info, 'Initial status (h)', name)
        if initial_status == 0:
            raise InputFormatError(
                f"Initial status of `{name}` must be non-zero!",
                f"{name}/Initial status (h)"
                )

        reserve_names = self.parse_reserve_eligibility(name, gen_info)

        min_uptime = _get_int(gen_info, 'Minimum uptime (h)', name, 1)
        min_downtime = _get_int(gen_info, 'Minimum downtime (h)', name, 1)

        if min_uptime < 0 or min_downtime < 0:
            raise InputFormatError(
                f"Minimum up and down times of `{name}` cannot be negative!",
                name
                )

        return ThermalGenData(
            name=name, bus=bus, p_min=p_min, p_max=p_max,
            ramp_up=_get_number(gen_info, 'Ramp up limit (MW)', name,
                                UNLIMITED_RAMP),
            ramp_down=_get_number(gen_info, 'Ramp down limit (MW)', name,
                                  UNLIMITED_RAMP),
            startup_limit=_get_number(gen_info, 'Startup limit (MW)', name,
                                      UNLIMITED_RAMP),
            shutdown_limit=_get_number(gen_info, 'Shutdown limit (MW)', name,
                                       UNLIMITED_RAMP),
            min_uptime=min_uptime, min_downtime=min_downtime,
            no_load_cost=no_load_cost, cost_segments=segments,
            startup_stages=self.parse_startup_stages(name, gen_info),
            initial_status=initial_status,
            initial_power=_get_number(gen_info, 'Initial power (MW)', name),
            must_run=bool(gen_info.get('Must run?', False)),
            reserve_names=reserve_names,
            commitment_status=self.parse_commitment_status(name, gen_info)
            )

    def parse_profiled(self, name: str, gen_info: dict) -> ProfiledGenData:
        """Read in a generator whose output bounds are given exogenously."""

        bus = self._check_bus(gen_info.get('Bus'), name)
        p_min = get_timeseries(gen_info.get('Minimum power (MW)'), self.T,
                               f"{name}/Minimum power (MW)")
        p_max = get_timeseries(gen_info.get('Maximum power (MW)'), self.T,
                               f"{name}/Maximum power (MW)")

        if np.any(p_min > p_max):
            raise InputFormatError(
                f"Minimum power of `{name}` exceeds its maximum power "
                f"at hour {int(np.argmax(p_min > p_max))}!", name
                )

        return ProfiledGenData(name, bus, p_min, p_max,
                               _get_number(gen_info, 'Cost ($/MW)', name, 0.))

    def parse_price_sensitive_load(self, name: str,
                                   load_info: dict) -> PriceSensitiveLoad:
        bus = self._check_bus(load_info.get('Bus'), name)

        return PriceSensitiveLoad(
            name, bus,
            get_timeseries(load_info.get('Demand (MW)'), self.T,
                           f"{name}/Demand (MW)"),
            get_timeseries(load_info.get('Revenue ($/MW)'), self.T,
                           f"{name}/Revenue ($/MW)")
            )

    def parse_reserves(self) -> list[ReserveRequirement]:
        reserves = list()

        for name, res_info in _get_section(self.data, 'Reserves').items():
            if not isinstance(res_info, dict):
                reserves.append(ReserveRequirement(
                    _reserve_name(name, res_info),
                    get_timeseries(res_info, self.T, f"Reserves/{name}")
                    ))

            else:
                reserves.append(ReserveRequirement(
                    name,
                    get_timeseries(res_info.get('Amount (MW)'), self.T,
                                   f"{name}/Amount (MW)"),
                    _get_number(res_info, 'Shortfall penalty ($/MW)', name, -1.)
                    ))

        return reserves

    def parse_contingency_lines(self, line_names: list[str]) -> list[str]:
        cont_lines = list()

        for name, cont_info in _get_section(self.data,
                                            'Contingencies').items():
            affected = _get_record(cont_info, name).get('Affected lines', [])

            if not isinstance(affected, list):
                raise InputFormatError(f"Affected lines of contingency "
                                       f"`{name}` must be a list!", name)

            for line in affected:
                if line not in line_names:
                    raise InputFormatError(f"Contingency `{name}` refers to "
                                           f"unknown line `{line}`!", name)

            if len(affected) != 1:
                logger.warning("Skipping contingency `%s` which does not "
                               "affect exactly one line", name)
                continue

            if affected[0] not in cont_lines:
                cont_lines.append(affected[0])

        return cont_lines

    def load(self) -> UCInputData:
        lines = [self.parse_line(name, _get_record(line_info, name))
                 for name, line_info in _get_section(
                    self.data, 'Transmission lines').items()]

        thermal_gens, profiled_gens = list(), list()
        for name, gen_info in _get_section(self.data, 'Generators').items():
            gen_info = _get_record(gen_info, name)
            gen_type = gen_info.get('Type', 'Thermal')

            if gen_type == 'Thermal':
                thermal_gens.append(self.parse_thermal(name, gen_info))
            elif gen_type == 'Profiled':
                profiled_gens.append(self.parse_profiled(name, gen_info))

            else:
                raise InputFormatError(f"Generator `{name}` has unknown "
                                       f"type `{gen_type}`!", f"{name}/Type")

        psl = [self.parse_price_sensitive_load(name,
                                               _get_record(load_info, name))
               for name, load_info in _get_section(
                    self.data, 'Price-sensitive loads').items()]

        line_names = [line.name for line in lines]
        cont_lines = self.parse_contingency_lines(line_names)
        factors = calculate_network_factors(self.buses, lines, self.ref_bus,
                                            self.config)

        islanding = [line_names[k] for k in sorted(factors.islanding)]
        relevant_pairs = preprocess_contingencies(
            line_names, cont_lines, factors.lodf, factors.islanding,
            self.config
            )

        return UCInputData(
            T=self.T, ref_bus=self.ref_bus, buses=self.buses, lines=lines,
            thermal_gens=thermal_gens, profiled_gens=profiled_gens, psl=psl,
            reserves=self.parse_reserves(), nodal_demand=self.parse_demand(),
            ptdf=factors.ptdf, lodf=factors.lodf,
            contingency_lines=cont_lines, relevant_pairs=relevant_pairs,
            islanding_lines=islanding, curtail_penalty=self.curtail_penalty
            )


def preprocess_contingencies(line_names: list[str], cont_lines: list[str],
                             lodf: np.ndarray, islanding: frozenset[int],
                             config: ModelConfig) -> list[ContingencyPair]:
    """Finds the monitored lines whose flows are affected by each outage.

    Outages islanding part of the grid cannot be represented with LODFs;
    they are either dropped or treated as fatal depending on the config.
    """
    pairs = list()
    for line in cont_lines:
        k = line_names.index(line)

        if k in islanding:
            if config.fail_on_islanding:
                raise ContingencySingularityError(
                    f"The outage of line `{line}` islands the network and "
                    "cannot be represented by line outage factors!", line
                    )

            logger.warning("Excluding contingency on line `%s` which would "
                           "island the network", line)
            continue

        pairs.extend(ContingencyPair(k, l) for l in range(len(line_names))
                     if l != k and lodf[l, k] != 0.)

    logger.info("Kept %d relevant N-1 pairs for %d contingencies",
                len(pairs), len(cont_lines))

    return pairs


def load_input(input_path: Union[str, Path],
               config: ModelConfig) -> UCInputData:
    """Reads a JSON grid document from file into unit commitment input."""

    input_path = Path(input_path)
    if not input_path.is_file():
        raise InputFormatError(f"Input file `{input_path}` does not exist!")

    with open(input_path, 'r') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as err:
            raise InputFormatError(
                f"Input file `{input_path}` is not valid JSON: {err}") from err

    logger.info("Loading grid from `%s`", input_path)
    return JsonGridLoader(data, config).load()
