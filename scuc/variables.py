"""Allocation and flat indexing of the decision variables of a UC model."""

from __future__ import annotations

import logging
from typing import Optional

import gurobipy as gp
from gurobipy import GRB

from .errors import ModelConstructionError
from .model_data import UCInputData

logger = logging.getLogger(__name__)


class VariableManager:
    """Creates every variable family of the model and looks them up by index.

    Each family is stored as one dense list of gurobipy variables. Families
    defined over an entity and an hour place the variable of entity `i` at
    hour `t` at position `i * T + t`; the per-generator startup category and
    cost segment families are kept as one such list per thermal generator,
    with the category or segment `s` taking the place of the entity.

    Families
    --------
        u           commitment of thermal generator g at hour t (binary)
        w           startup of thermal generator g at hour t (binary)
        p           output of thermal generator g above its minimum
        p_seg       output of generator g on its cost segment s
        v           startup of generator g in category s (binary)
        r           reserve held for requirement q by its eligible generator j
        reserve_shortfall   unmet part of reserve requirement q
        curtail     load shed at bus b
        p_prof      output of profiled generator i
        psl_served  demand served of price-sensitive load i
        viol_base   base-case flow limit violation on line l
        viol_cont   post-outage flow limit violation of contingency pair c

    """

    def __init__(self) -> None:
        self.T = self.G = self.P = self.PSL = 0
        self.L = self.NB = self.NR = self.NC = 0
        self.n_segments: list[int] = list()
        self.n_categories: list[int] = list()

        # position of each thermal generator among the providers of each
        # reserve requirement
        self.reserve_gi: list[dict[int, int]] = list()

        self._u: list[gp.Var] = list()
        self._w: list[gp.Var] = list()
        self._p: list[gp.Var] = list()
        self._p_seg: list[list[gp.Var]] = list()
        self._v: list[list[gp.Var]] = list()
        self._r: list[list[gp.Var]] = list()
        self._shortfall: list[gp.Var] = list()
        self._curtail: list[gp.Var] = list()
        self._p_prof: list[gp.Var] = list()
        self._psl_served: list[gp.Var] = list()
        self._viol_base: list[gp.Var] = list()
        self._viol_cont: list[gp.Var] = list()

        self.built = False

    @staticmethod
    def _add_family(model: gp.Model, n: int, name: str, lb=0.,
                    ub=GRB.INFINITY, vtype=GRB.CONTINUOUS) -> list[gp.Var]:
        if n == 0:
            return list()

        new_vars = model.addVars(n, lb=lb, ub=ub, vtype=vtype, name=name)
        return [new_vars[i] for i in range(n)]

    def build(self, model: gp.Model, uc: UCInputData) -> None:
        """Adds one variable per (entity, hour[, stage]) to the given model."""

        if self.built:
            raise ModelConstructionError("Variables have already been "
                                         "added to a model!")

        T = self.T = uc.T
        self.G = len(uc.thermal_gens)
        self.P = len(uc.profiled_gens)
        self.PSL = len(uc.psl)
        self.L = len(uc.lines)
        self.NB = len(uc.buses)
        self.NR = len(uc.reserves)
        self.NC = len(uc.relevant_pairs)

        self._u = self._add_family(model, self.G * T, 'u', vtype=GRB.BINARY,
                                   ub=1.)
        self._w = self._add_family(model, self.G * T, 'w', vtype=GRB.BINARY,
                                   ub=1.)

        self._p = self._add_family(
            model, self.G * T, 'p',
            ub={gi * T + t: max(gen.p_max - gen.p_min, 0.)
                for gi, gen in enumerate(uc.thermal_gens) for t in range(T)}
            )

        self.n_segments = [len(gen.cost_segments) for gen in uc.thermal_gens]
        self.n_categories = [len(gen.startup_stages)
                             for gen in uc.thermal_gens]

        self._p_seg = [
            self._add_family(
                model, len(gen.cost_segments) * T, f'p_seg_{gi}',
                ub={s * T + t: seg.length
                    for s, seg in enumerate(gen.cost_segments)
                    for t in range(T)}
                )
            for gi, gen in enumerate(uc.thermal_gens)
            ]

        self._v = [self._add_family(model, len(gen.startup_stages) * T,
                                    f'v_{gi}', vtype=GRB.BINARY, ub=1.)
                   for gi, gen in enumerate(uc.thermal_gens)]

        self.reserve_gi = [
            {gi: j for j, gi in enumerate(uc.reserve_providers(q))}
            for q in range(self.NR)
            ]

        self._r = [
            self._add_family(
                model, len(providers) * T, f'r_{q}',
                ub={j * T + t: max(uc.thermal_gens[gi].p_max
                                   - uc.thermal_gens[gi].p_min, 0.)
                    for gi, j in providers.items() for t in range(T)}
                )
            for q, providers in enumerate(self.reserve_gi)
            ]

        self._shortfall = self._add_family(
            model, self.NR * T, 'reserve_shortfall',
            ub={q * T + t: GRB.INFINITY if req.allows_shortfall else 0.
                for q, req in enumerate(uc.reserves) for t in range(T)}
            )

        self._curtail = self._add_family(
            model, self.NB * T, 'curtail',
            ub={b * T + t: max(float(uc.nodal_demand[t, b]), 0.)
                for b in range(self.NB) for t in range(T)}
            )

        self._p_prof = self._add_family(
            model, self.P * T, 'p_prof',
            lb={i * T + t: float(gen.p_min[t])
                for i, gen in enumerate(uc.profiled_gens) for t in range(T)},
            ub={i * T + t: float(gen.p_max[t])
                for i, gen in enumerate(uc.profiled_gens) for t in range(T)}
            )

        self._psl_served = self._add_family(
            model, self.PSL * T, 'psl_served',
            ub={i * T + t: max(float(load.demand[t]), 0.)
                for i, load in enumerate(uc.psl) for t in range(T)}
            )

        self._viol_base = self._add_family(model, self.L * T, 'viol_base')
        self._viol_cont = self._add_family(model, self.NC * T, 'viol_cont')

        model.update()
        self.built = True

        logger.info("Created %d variables (%d binary) for %d thermal "
                    "generators over %d hours", self.num_vars,
                    self.num_binaries, self.G, T)

    @property
    def num_binaries(self) -> int:
        return (len(self._u) + len(self._w)
                + sum(len(cats) for cats in self._v))

    @property
    def num_vars(self) -> int:
        return (self.num_binaries + len(self._p)
                + sum(len(held) for held in self._r)
                + sum(len(segs) for segs in self._p_seg)
                + len(self._shortfall) + len(self._curtail)
                + len(self._p_prof) + len(self._psl_served)
                + len(self._viol_base) + len(self._viol_cont))

    def _check_time(self, t: int, family: str) -> None:
        if not 0 <= t < self.T:
            raise ModelConstructionError(
                f"Hour {t} is outside the horizon of `{family}` "
                f"variables ({self.T} hours)!"
                )

    def _index(self, i: int, size: int, t: int, family: str) -> int:
        if not 0 <= i < size:
            raise ModelConstructionError(
                f"Entity {i} is out of range for `{family}` variables, "
                f"which are defined for {size} entities!"
                )

        self._check_time(t, family)
        return i * self.T + t

    def index(self, i: int, t: int) -> int:
        """The flat position of entity `i` at hour `t` in a family."""
        self._check_time(t, 'indexed')
        return i * self.T + t

    def unravel(self, flat: int, size: int) -> tuple[int, int]:
        """The (entity, hour) pair at a flat position of a family of `size`."""
        if not self.built:
            raise ModelConstructionError("Variables must be built before "
                                         "their indices can be unravelled!")

        if not 0 <= flat < size * self.T:
            raise ModelConstructionError(
                f"Flat index {flat} is out of range for a family of {size} "
                f"entities over {self.T} hours!"
                )

        return divmod(flat, self.T)

    def u(self, gi: int, t: int) -> gp.Var:
        return self._u[self._index(gi, self.G, t, 'u')]

    def w(self, gi: int, t: int) -> gp.Var:
        return self._w[self._index(gi, self.G, t, 'w')]

    def p(self, gi: int, t: int) -> gp.Var:
        return self._p[self._index(gi, self.G, t, 'p')]

    def p_seg(self, gi: int, s: int, t: int) -> gp.Var:
        self._index(gi, self.G, t, 'p_seg')
        return self._p_seg[gi][self._index(s, self.n_segments[gi], t,
                                           'p_seg')]

    def v(self, gi: int, s: int, t: int) -> gp.Var:
        self._index(gi, self.G, t, 'v')
        return self._v[gi][self._index(s, self.n_categories[gi], t, 'v')]

    def r(self, gi: int, q: int, t: int) -> Optional[gp.Var]:
        """Reserve held by generator `gi` for requirement `q`.

        Returns None if the generator cannot provide that requirement.
        """
        self._index(gi, self.G, t, 'r')
        self._index(q, self.NR, t, 'r')

        if gi not in self.reserve_gi[q]:
            return None

        return self._r[q][self._index(self.reserve_gi[q][gi],
                                      len(self.reserve_gi[q]), t, 'r')]

    def reserves_held(self, gi: int, t: int) -> list[gp.Var]:
        """Every reserve variable of generator `gi` at hour `t`."""
        held = [self.r(gi, q, t) for q in range(self.NR)]
        return [r for r in held if r is not None]

    def reserve_shortfall(self, q: int, t: int) -> gp.Var:
        return self._shortfall[self._index(q, self.NR, t,
                                           'reserve_shortfall')]

    def curtail(self, b: int, t: int) -> gp.Var:
        return self._curtail[self._index(b, self.NB, t, 'curtail')]

    def p_prof(self, i: int, t: int) -> gp.Var:
        return self._p_prof[self._index(i, self.P, t, 'p_prof')]

    def psl_served(self, i: int, t: int) -> gp.Var:
        return self._psl_served[self._index(i, self.PSL, t, 'psl_served')]

    def viol_base(self, l: int, t: int) -> gp.Var:
        return self._viol_base[self._index(l, self.L, t, 'viol_base')]

    def viol_cont(self, c: int, t: int) -> gp.Var:
        return self._viol_cont[self._index(c, self.NC, t, 'viol_cont')]

    def production(self, uc: UCInputData, gi: int, t: int) -> gp.LinExpr:
        """Total output p_min * u + p of a thermal generator."""
        return gp.LinExpr([uc.thermal_gens[gi].p_min, 1.],
                          [self.u(gi, t), self.p(gi, t)])

    def shutdown(self, uc: UCInputData, gi: int, t: int) -> gp.LinExpr:
        """The shutdown indicator w[t] - u[t] + u[t-1] as an expression."""
        expr = gp.LinExpr([1., -1.], [self.w(gi, t), self.u(gi, t)])

        if t == 0:
            expr.addConstant(float(uc.thermal_gens[gi].initially_on))
        else:
            expr.add(self.u(gi, t - 1))

        return expr
