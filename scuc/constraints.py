"""Operational, inter-temporal and network security constraints.

Every constraint family is registered under a name in
`ConstraintBuilder.constrs` so that its rows can be inspected after the model
has been built. Thermal generator output at hour t is written throughout as
P[t] = p_min * u[t] + p[t], and its shutdown indicator as
z[t] = w[t] - u[t] + u[t - 1], with hours before the horizon taken from the
generator's initial status.
"""

from __future__ import annotations

import logging
from typing import Optional

import gurobipy as gp

from .config import ModelConfig
from .model_data import UCInputData
from .variables import VariableManager

logger = logging.getLogger(__name__)


class ConstraintBuilder:

    def __init__(self) -> None:
        self.constrs: dict[str, list[gp.Constr]] = dict()

        # base case flow expressions; None where a line's PTDF row is zero
        self.flows: dict[tuple[int, int], Optional[gp.LinExpr]] = dict()

    def _add(self, model: gp.Model, family: str, constr) -> gp.Constr:
        new_constr = model.addConstr(constr,
                                     name=f'{family}[{self.count(family)}]')
        self.constrs.setdefault(family, list()).append(new_constr)

        return new_constr

    def count(self, family: str) -> int:
        return len(self.constrs.get(family, ()))

    @property
    def num_constrs(self) -> int:
        return sum(len(constrs) for constrs in self.constrs.values())

    def build(self, model: gp.Model, config: ModelConfig, uc: UCInputData,
              uc_vars: VariableManager) -> None:
        self.add_system_constraints(model, uc, uc_vars)

        for gi in range(len(uc.thermal_gens)):
            self.add_generator_constraints(model, uc, uc_vars, gi)

        self.add_network_constraints(model, config, uc, uc_vars)
        model.update()

        logger.info("Added %d constraints: %s", self.num_constrs,
                    ', '.join(f'{family}={len(constrs)}'
                              for family, constrs in self.constrs.items()))

    # --- system-wide balance and reserve requirements --- #
    def add_system_constraints(self, model: gp.Model, uc: UCInputData,
                               uc_vars: VariableManager) -> None:
        for t in range(uc.T):
            supply = gp.quicksum(uc_vars.production(uc, gi, t)
                                 for gi in range(len(uc.thermal_gens)))
            supply += gp.quicksum(uc_vars.p_prof(i, t)
                                  for i in range(len(uc.profiled_gens)))
            supply += gp.quicksum(uc_vars.curtail(b, t)
                                  for b in range(len(uc.buses)))

            served = gp.quicksum(uc_vars.psl_served(i, t)
                                 for i in range(len(uc.psl)))

            self._add(model, 'power_balance',
                      supply - served == float(uc.system_demand[t]))

            for q, req in enumerate(uc.reserves):
                if not req.is_active(t):
                    continue

                provided = gp.quicksum(uc_vars.r(gi, q, t)
                                       for gi in uc.reserve_providers(q))
                provided += uc_vars.reserve_shortfall(q, t)

                self._add(model, 'reserve_requirement',
                          provided >= float(req.amount[t]))

    # --- thermal generator operation --- #
    def _previous_on(self, uc: UCInputData, uc_vars: VariableManager,
                     gi: int, t: int):
        """Commitment at hour t - 1, either a variable or the initial status."""
        if t == 0:
            return float(uc.thermal_gens[gi].initially_on)

        return uc_vars.u(gi, t - 1)

    def _was_on(self, uc: UCInputData, uc_vars: VariableManager,
                gi: int, i: int):
        if i < 0:
            return uc.thermal_gens[gi].was_on(i)

        return uc_vars.u(gi, i)

    def add_generator_constraints(self, model: gp.Model, uc: UCInputData,
                                  uc_vars: VariableManager, gi: int) -> None:
        self.add_startup_logic(model, uc, uc_vars, gi)
        self.add_production_limits(model, uc, uc_vars, gi)
        self.add_ramping(model, uc, uc_vars, gi)
        self.add_min_up_down(model, uc, uc_vars, gi)
        self.add_initial_and_fixed_commitment(model, uc, uc_vars, gi)
        self.add_startup_categories(model, uc, uc_vars, gi)

    def add_startup_logic(self, model: gp.Model, uc: UCInputData,
                          uc_vars: VariableManager, gi: int) -> None:
        for t in range(uc.T):
            u_prev = self._previous_on(uc, uc_vars, gi, t)
            u_now, w_now = uc_vars.u(gi, t), uc_vars.w(gi, t)

            self._add(model, 'startup_lower', w_now >= u_now - u_prev)
            self._add(model, 'startup_on', w_now <= u_now)
            self._add(model, 'startup_after_off', w_now <= 1 - u_prev)

    def add_production_limits(self, model: gp.Model, uc: UCInputData,
                              uc_vars: VariableManager, gi: int) -> None:
        """Splits output above minimum into segments available when on."""
        gen = uc.thermal_gens[gi]

        for t in range(uc.T):
            linear_vars = [uc_vars.p_seg(gi, s, t)
                           for s in range(len(gen.cost_segments))]
            linear_coefs = [1.] * len(linear_vars)

            self._add(model, 'segment_sum',
                      uc_vars.p(gi, t) == gp.LinExpr(linear_coefs,
                                                     linear_vars))

            for s, seg in enumerate(gen.cost_segments):
                self._add(model, 'segment_limit',
                          uc_vars.p_seg(gi, s, t)
                          <= seg.length * uc_vars.u(gi, t))

            held = uc_vars.reserves_held(gi, t)
            headroom = gp.LinExpr([1.] * (len(held) + 1),
                                  [uc_vars.p(gi, t)] + held)

            self._add(model, 'capacity',
                      headroom <= (gen.p_max - gen.p_min) * uc_vars.u(gi, t))

    def add_ramping(self, model: gp.Model, uc: UCInputData,
                    uc_vars: VariableManager, gi: int) -> None:
        gen = uc.thermal_gens[gi]

        for t in range(uc.T):
            power = uc_vars.production(uc, gi, t)
            u_prev = self._previous_on(uc, uc_vars, gi, t)

            if t == 0:
                prev_power = gen.initial_power if gen.initially_on else 0.
            else:
                prev_power = uc_vars.production(uc, gi, t - 1)

            ramp_up = power - prev_power + gp.quicksum(
                uc_vars.reserves_held(gi, t))

            self._add(model, 'ramp_up',
                      ramp_up <= gen.ramp_up * u_prev
                      + gen.startup_limit * uc_vars.w(gi, t))

            self._add(model, 'ramp_down',
                      prev_power - power <= gen.ramp_down * uc_vars.u(gi, t)
                      + gen.shutdown_limit * uc_vars.shutdown(uc, gi, t))

    def add_min_up_down(self, model: gp.Model, uc: UCInputData,
                        uc_vars: VariableManager, gi: int) -> None:
        """Cumulative startup and shutdown windows ending at each hour."""
        gen = uc.thermal_gens[gi]

        for t in range(uc.T):
            if gen.min_uptime > 1:
                window = range(max(0, t - gen.min_uptime + 1), t + 1)
                linear_vars = [uc_vars.w(gi, i) for i in window]
                linear_vars += [uc_vars.u(gi, t)]
                linear_coefs = [1.] * len(window) + [-1.]

                self._add(model, 'min_uptime',
                          gp.LinExpr(linear_coefs, linear_vars) <= 0)

            if gen.min_downtime > 1:
                window = range(max(0, t - gen.min_downtime + 1), t + 1)
                stops = gp.quicksum(uc_vars.shutdown(uc, gi, i)
                                    for i in window)

                self._add(model, 'min_downtime',
                          stops + uc_vars.u(gi, t) <= 1)

    def add_initial_and_fixed_commitment(self, model: gp.Model,
                                         uc: UCInputData,
                                         uc_vars: VariableManager,
                                         gi: int) -> None:
        """Carries the initial up or down time into the start of the horizon.

        Units which were switched on or off before the horizon began must
        finish their minimum up or down time first; externally fixed and
        must-run commitments are then pinned hour by hour.
        """
        gen = uc.thermal_gens[gi]

        if gen.initially_on:
            init_periods = min(uc.T, max(gen.min_uptime
                                         - gen.initial_status, 0))
            init_value = 1
        else:
            init_periods = min(uc.T, max(gen.min_downtime
                                         + gen.initial_status, 0))
            init_value = 0

        for t in range(init_periods):
            self._add(model, 'initial_commitment',
                      uc_vars.u(gi, t) == init_value)

        for t in range(uc.T):
            if gen.must_run:
                self._add(model, 'must_run', uc_vars.u(gi, t) == 1)

            fixed = gen.fixed_commitment(t)
            if fixed is not None:
                self._add(model, 'fixed_commitment',
                          uc_vars.u(gi, t) == fixed)

    def add_startup_categories(self, model: gp.Model, uc: UCInputData,
                               uc_vars: VariableManager, gi: int) -> None:
        """Selects the startup category matching the time spent offline.

        A startup at hour t can only be of category s if the unit was off
        for all of the preceding delay(s) hours, and only if it was on at
        some point within the preceding delay(s + 1) hours. Together these
        admit exactly the category with the greatest delay not exceeding
        the unit's downtime.
        """
        stages = uc.thermal_gens[gi].startup_stages
        n_stages = len(stages)

        for t in range(uc.T):
            self._add(model, 'startup_category_sum',
                      gp.quicksum(uc_vars.v(gi, s, t)
                                  for s in range(n_stages))
                      == uc_vars.w(gi, t))

            for s in range(1, n_stages):
                delay = stages[s].delay
                chosen = gp.quicksum(uc_vars.v(gi, s2, t)
                                     for s2 in range(s, n_stages))
                hours_off = gp.quicksum(1 - self._was_on(uc, uc_vars, gi, i)
                                        for i in range(t - delay, t))

                self._add(model, 'startup_category_lower',
                          delay * chosen <= hours_off)

            for s in range(n_stages - 1):
                next_delay = stages[s + 1].delay
                hours_on = gp.quicksum(self._was_on(uc, uc_vars, gi, i)
                                       for i in range(t - next_delay, t))

                self._add(model, 'startup_category_upper',
                          uc_vars.v(gi, s, t) <= hours_on)

    # --- DC network flows, base case and post-contingency --- #
    def net_injection(self, uc: UCInputData, uc_vars: VariableManager,
                      b: int, t: int) -> gp.LinExpr:
        bus = uc.buses[b]

        inj = gp.quicksum(uc_vars.production(uc, gi, t)
                          for gi in uc.thermal_at_bus[bus])
        inj += gp.quicksum(uc_vars.p_prof(i, t)
                           for i in uc.profiled_at_bus[bus])
        inj -= gp.quicksum(uc_vars.psl_served(i, t)
                           for i in uc.psl_at_bus[bus])
        inj += uc_vars.curtail(b, t)
        inj -= float(uc.nodal_demand[t, b])

        return inj

    def add_network_constraints(self, model: gp.Model, config: ModelConfig,
                                uc: UCInputData,
                                uc_vars: VariableManager) -> None:
        if not uc.lines:
            return

        skipped = 0
        for t in range(uc.T):
            injections = [self.net_injection(uc, uc_vars, b, t)
                          for b in range(len(uc.buses))]

            for l, line in uc.iter_lines():
                buses = [b for b in range(len(uc.buses))
                         if uc.ptdf[l, b] != 0.]

                if not buses:
                    self.flows[l, t] = None
                    skipped += 1
                    continue

                flow = gp.LinExpr()
                for b in buses:
                    flow.add(injections[b], uc.ptdf_at(l, b))
                self.flows[l, t] = flow

                viol = uc_vars.viol_base(l, t)
                self._add(model, 'flow_upper',
                          flow - viol <= line.normal_limit)
                self._add(model, 'flow_lower',
                          flow + viol >= -line.normal_limit)

            for c, (k, l) in enumerate(uc.relevant_pairs):
                flow_l, flow_k = self.flows[l, t], self.flows[k, t]

                post_flow = gp.LinExpr()
                if flow_l is not None:
                    post_flow.add(flow_l)
                if flow_k is not None:
                    post_flow.add(flow_k, uc.lodf_at(l, k))

                if post_flow.size() == 0:
                    skipped += 1
                    continue

                limit = uc.line(l).emergency_limit
                viol = uc_vars.viol_cont(c, t)
                self._add(model, 'contingency_upper',
                          post_flow - viol <= limit)
                self._add(model, 'contingency_lower',
                          post_flow + viol >= -limit)

        if skipped:
            logger.debug("Omitted %d flow limits with no sensitive "
                         "injections", skipped)
