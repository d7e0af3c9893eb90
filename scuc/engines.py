"""Building a security-constrained unit commitment model and solving it."""

from __future__ import annotations

import logging
import time
from typing import NamedTuple, Optional

import numpy as np
import gurobipy as gp
from gurobipy import GRB

from .config import ModelConfig
from .errors import InputFormatError, ModelConstructionError, SolverStatusError
from .input.loaders import load_input
from .model_data import UCInputData
from .variables import VariableManager
from .objective import ObjectiveBuilder
from .constraints import ConstraintBuilder

logger = logging.getLogger(__name__)

_STATUS_NAMES = {getattr(GRB.Status, name): name
                 for name in dir(GRB.Status) if name.isupper()}
_FAILURE_STATUSES = {GRB.INFEASIBLE, GRB.UNBOUNDED, GRB.INF_OR_UNBD}


class SolveOutcome(NamedTuple):
    """What the solver achieved: "optimal", or a "feasible" incumbent."""
    status: str
    objective_value: float
    mip_gap: float
    solve_time: float


class UCSolution(NamedTuple):
    """Variable values of a solved model, as (entity, hour) arrays.

    Thermal generator arrays have shape (G, T); `segment_dispatch` and
    `startup_category` have one (segments or categories, T) array per
    thermal generator. `reserve` totals what each generator holds across
    requirements, and `reserve_by_requirement` has one (G, T) array per
    requirement which is zero for generators ineligible to provide it.
    """
    status: str
    objective_value: float
    mip_gap: float

    commitment: np.ndarray
    startup: np.ndarray
    dispatch: np.ndarray
    dispatch_above_min: np.ndarray
    segment_dispatch: list[np.ndarray]
    startup_category: list[np.ndarray]
    reserve: np.ndarray
    reserve_by_requirement: list[np.ndarray]

    reserve_shortfall: np.ndarray
    profiled_output: np.ndarray
    psl_served: np.ndarray
    curtailment: np.ndarray

    base_flows: np.ndarray
    base_violations: np.ndarray
    contingency_violations: np.ndarray


def _grid(getter, n: int, T: int) -> np.ndarray:
    return np.array([[getter(i, t).X for t in range(T)] for i in range(n)],
                    dtype=float).reshape(n, T)


class SCUCSolver:
    """Assembles the variables, objective and constraints of a UC model.

    Parameters
    ----------
    config      Settings for the solver and for filling in input defaults.
    uc          Already loaded grid input; if not given, it is read from
                `config.input_data_path`.

    """

    def __init__(self,
                 config: ModelConfig, uc: Optional[UCInputData] = None) -> None:
        self.config = config
        self.timings = {'Load': 0., 'Variables': 0., 'Objective': 0.,
                        'Constraints': 0., 'Solve': 0.}

        if uc is None:
            if config.input_data_path is None:
                raise InputFormatError("No input grid was given and no "
                                       "input file path is configured!")

            start_time = time.time()
            uc = load_input(config.input_data_path, config)
            self.timings['Load'] = time.time() - start_time

        self.uc = uc
        self.model: Optional[gp.Model] = None
        self.variables = VariableManager()
        self.objective = ObjectiveBuilder()
        self.constraints = ConstraintBuilder()
        self.outcome: Optional[SolveOutcome] = None

    def build(self) -> gp.Model:
        if self.model is not None:
            raise ModelConstructionError("This unit commitment model has "
                                         "already been built!")

        self.model = gp.Model('SCUC')

        start_time = time.time()
        self.variables.build(self.model, self.uc)
        self.timings['Variables'] = time.time() - start_time

        start_time = time.time()
        self.objective.build(self.model, self.config, self.uc, self.variables)
        self.timings['Objective'] = time.time() - start_time

        start_time = time.time()
        self.constraints.build(self.model, self.config, self.uc,
                               self.variables)
        self.timings['Constraints'] = time.time() - start_time

        logger.info("Built model in %.2f seconds",
                    sum(self.timings[phase] for phase in
                        ('Variables', 'Objective', 'Constraints')))

        return self.model

    def solve(self) -> SolveOutcome:
        if self.model is None:
            self.build()

        self.model.Params.OutputFlag = int(self.config.solver_output)
        self.model.Params.TimeLimit = self.config.solver_time_limit_sec
        self.model.Params.MIPGap = self.config.relative_gap
        self.model.Params.Threads = self.config.threads

        start_time = time.time()
        self.model.optimize()
        self.timings['Solve'] = time.time() - start_time

        status = self.model.Status
        status_name = _STATUS_NAMES.get(status, str(status))

        if status in _FAILURE_STATUSES:
            raise SolverStatusError(f"The solver found the model to be "
                                    f"{status_name.lower()}!", status_name)

        if status == GRB.OPTIMAL:
            outcome_status = 'optimal'
        elif self.model.SolCount > 0:
            outcome_status = 'feasible'

            logger.warning("Solver stopped with status %s; using the best "
                           "solution found", status_name)

        else:
            raise SolverStatusError(f"The solver stopped with status "
                                    f"{status_name} without finding a "
                                    "solution!", status_name)

        # the gap is zero for models without integer variables
        mip_gap = self.model.MIPGap if self.model.IsMIP else 0.

        self.outcome = SolveOutcome(outcome_status, self.model.ObjVal,
                                    mip_gap, self.timings['Solve'])

        logger.info("Solved to %s objective %.2f (gap %.4f) in %.2f seconds",
                    outcome_status, self.outcome.objective_value,
                    mip_gap, self.outcome.solve_time)

        return self.outcome

    def solution(self) -> UCSolution:
        if self.outcome is None:
            raise SolverStatusError("Model must be solved before its "
                                    "solution can be read!")

        uc, uc_vars, T = self.uc, self.variables, self.uc.T
        G = len(uc.thermal_gens)

        commitment = _grid(uc_vars.u, G, T)
        above_min = _grid(uc_vars.p, G, T)
        p_mins = np.array([gen.p_min for gen in uc.thermal_gens]).reshape(G, 1)

        reserve_by_requirement = list()
        for q in range(len(uc.reserves)):
            held = np.zeros((G, T))

            for gi in uc.reserve_providers(q):
                held[gi] = [uc_vars.r(gi, q, t).X for t in range(T)]
            reserve_by_requirement.append(held)

        segment_dispatch = [
            _grid(lambda s, t: uc_vars.p_seg(gi, s, t),
                  len(gen.cost_segments), T)
            for gi, gen in enumerate(uc.thermal_gens)
            ]
        startup_category = [
            _grid(lambda s, t: uc_vars.v(gi, s, t),
                  len(gen.startup_stages), T)
            for gi, gen in enumerate(uc.thermal_gens)
            ]

        dispatch = p_mins * commitment + above_min
        profiled = _grid(uc_vars.p_prof, len(uc.profiled_gens), T)
        psl_served = _grid(uc_vars.psl_served, len(uc.psl), T)
        curtailment = _grid(uc_vars.curtail, len(uc.buses), T)

        injections = curtailment.T - uc.nodal_demand
        for gi, gen in enumerate(uc.thermal_gens):
            injections[:, uc.bus_index(gen.bus)] += dispatch[gi]
        for i, gen in enumerate(uc.profiled_gens):
            injections[:, uc.bus_index(gen.bus)] += profiled[i]
        for i, load in enumerate(uc.psl):
            injections[:, uc.bus_index(load.bus)] -= psl_served[i]

        return UCSolution(
            status=self.outcome.status,
            objective_value=self.outcome.objective_value,
            mip_gap=self.outcome.mip_gap,
            commitment=np.round(commitment), startup=np.round(
                _grid(uc_vars.w, G, T)),
            dispatch=dispatch, dispatch_above_min=above_min,
            segment_dispatch=segment_dispatch,
            startup_category=[np.round(cats) for cats in startup_category],
            reserve=sum(reserve_by_requirement, np.zeros((G, T))),
            reserve_by_requirement=reserve_by_requirement,
            reserve_shortfall=_grid(uc_vars.reserve_shortfall,
                                    len(uc.reserves), T),
            profiled_output=profiled, psl_served=psl_served,
            curtailment=curtailment,
            base_flows=(uc.ptdf @ injections.T).reshape(len(uc.lines), T),
            base_violations=_grid(uc_vars.viol_base, len(uc.lines), T),
            contingency_violations=_grid(uc_vars.viol_cont,
                                         len(uc.relevant_pairs), T)
            )
