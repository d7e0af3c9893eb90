"""The cost minimization objective of a unit commitment model."""

from __future__ import annotations

import logging

import gurobipy as gp
from gurobipy import GRB

from .config import ModelConfig
from .model_data import UCInputData
from .variables import VariableManager

logger = logging.getLogger(__name__)


class ObjectiveBuilder:
    """Sums the operating costs, load revenues and penalties of a schedule."""

    def __init__(self) -> None:
        self.objective = gp.LinExpr()

    def build(self, model: gp.Model, config: ModelConfig, uc: UCInputData,
              uc_vars: VariableManager) -> gp.LinExpr:
        if uc.curtail_penalty is not None:
            curtail_penalty = uc.curtail_penalty
        else:
            curtail_penalty = config.curtail_penalty

        coefs, terms = list(), list()
        for t in range(uc.T):
            for gi, gen in enumerate(uc.thermal_gens):
                coefs.append(gen.no_load_cost)
                terms.append(uc_vars.u(gi, t))

                for s, seg in enumerate(gen.cost_segments):
                    coefs.append(seg.slope)
                    terms.append(uc_vars.p_seg(gi, s, t))

                for s, stage in enumerate(gen.startup_stages):
                    coefs.append(stage.cost)
                    terms.append(uc_vars.v(gi, s, t))

            for i, gen in enumerate(uc.profiled_gens):
                coefs.append(gen.cost)
                terms.append(uc_vars.p_prof(i, t))

            for i, load in enumerate(uc.psl):
                coefs.append(-float(load.revenue[t]))
                terms.append(uc_vars.psl_served(i, t))

            for b in range(len(uc.buses)):
                coefs.append(curtail_penalty)
                terms.append(uc_vars.curtail(b, t))

            for q, req in enumerate(uc.reserves):
                if req.allows_shortfall:
                    coefs.append(req.shortfall_penalty)
                    terms.append(uc_vars.reserve_shortfall(q, t))

            for l, line in uc.iter_lines():
                coefs.append(line.flow_penalty)
                terms.append(uc_vars.viol_base(l, t))

            # post-outage violations are priced at the monitored line's rate
            for c, pair in enumerate(uc.relevant_pairs):
                coefs.append(uc.line(pair.l).flow_penalty)
                terms.append(uc_vars.viol_cont(c, t))

        self.objective = gp.LinExpr(coefs, terms)
        model.setObjective(self.objective, GRB.MINIMIZE)

        logger.info("Added objective with %d cost terms", len(terms))
        return self.objective
