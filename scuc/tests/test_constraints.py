"""Behaviour of the operational and network constraints on small grids."""

import random

import gurobipy as gp
import numpy as np
import pytest

from scuc.config import ModelConfig, replace_config
from scuc.constraints import ConstraintBuilder
from scuc.errors import SolverStatusError
from scuc.input.loaders import JsonGridLoader
from scuc.variables import VariableManager

from .grids import (requires_gurobi, grid_document, thermal_gen,
                    triangle_lines, solve_document)

pytestmark = requires_gurobi


def single_unit_document(T, demand=0., **gen_fields):
    return grid_document(T=T, buses={'b1': {'Load (MW)': demand}},
                         generators={'g1': thermal_gen(**gen_fields)})


def build_constraints(doc, config=ModelConfig()):
    uc = JsonGridLoader(doc, config).load()
    model = gp.Model()
    uc_vars = VariableManager()
    uc_vars.build(model, uc)

    constraints = ConstraintBuilder()
    constraints.build(model, config, uc, uc_vars)
    model.dispose()

    return uc, constraints


def test_segment_dispatch():
    doc = single_unit_document(1, demand=70., points=[0., 40., 100.],
                               costs=[0., 400., 1600.])
    solver, solution = solve_document(doc)

    np.testing.assert_allclose(solution.segment_dispatch[0][:, 0],
                               [40., 30.], atol=1e-6)
    np.testing.assert_allclose(solution.dispatch_above_min[0],
                               solution.segment_dispatch[0].sum(axis=0))
    assert solution.objective_value == pytest.approx(1000.)


def uptime_feasible(pattern, k):
    T = len(pattern)
    t = 0

    while t < T:
        if pattern[t]:
            start = t
            while t < T and pattern[t]:
                t += 1

            if t < T and t - start < k:
                return False
        else:
            t += 1

    return True


@pytest.mark.parametrize('k', [1, 3, 6])
def test_min_uptime_windows(k):
    T = 8
    rng = random.Random(k)
    patterns = [[rng.randint(0, 1) for _ in range(T)] for _ in range(10)]
    patterns += [[1] * k + [0] * (T - k), [0, 1] + [0] * (T - 2)]

    for pattern in patterns:
        doc = single_unit_document(T, **{'Minimum uptime (h)': k,
                                         'Initial status (h)': -10,
                                         'Commitment status': pattern})

        if uptime_feasible(pattern, k):
            _, solution = solve_document(doc)
            np.testing.assert_array_equal(solution.commitment[0], pattern)

        else:
            with pytest.raises(SolverStatusError):
                solve_document(doc)


def test_min_downtime_window():
    fields = {'Minimum downtime (h)': 3, 'Initial status (h)': 5}

    with pytest.raises(SolverStatusError):
        solve_document(single_unit_document(
            4, **fields, **{'Commitment status': [1, 0, 0, 1]}))

    _, solution = solve_document(single_unit_document(
        5, **fields, **{'Commitment status': [1, 0, 0, 0, 1]}))
    np.testing.assert_array_equal(solution.startup[0], [0, 0, 0, 0, 1])


@pytest.mark.parametrize('stage_costs', [[10., 30., 60.], [60., 30., 10.]])
@pytest.mark.parametrize('downtime', range(1, 8))
def test_startup_category_matches_downtime(downtime, stage_costs):
    pattern = [1] + [0] * downtime + [1]
    doc = single_unit_document(
        len(pattern), **{'Startup delays (h)': [1, 3, 6],
                         'Startup costs ($)': stage_costs,
                         'Initial status (h)': 5,
                         'Commitment status': pattern}
        )
    _, solution = solve_document(doc)

    expected = max(s for s, delay in enumerate([1, 3, 6])
                   if delay <= downtime)
    categories = solution.startup_category[0][:, downtime + 1]

    np.testing.assert_array_equal(categories, np.eye(3)[expected])
    assert solution.objective_value == pytest.approx(stage_costs[expected])


def test_startup_category_from_initial_status():
    doc = single_unit_document(
        2, **{'Startup delays (h)': [1, 4], 'Startup costs ($)': [5., 50.],
              'Initial status (h)': -3, 'Commitment status': [0, 1]}
        )
    _, solution = solve_document(doc)

    # off for the three hours before the horizon and the first hour in it
    np.testing.assert_array_equal(solution.startup_category[0][:, 1], [0, 1])


def test_initial_uptime_carryover():
    doc = single_unit_document(4, points=[0., 100.], costs=[100., 1100.],
                               **{'Initial status (h)': 2,
                                  'Minimum uptime (h)': 4})
    solver, solution = solve_document(doc)

    np.testing.assert_array_equal(solution.commitment[0], [1, 1, 0, 0])
    assert solver.constraints.count('initial_commitment') == 2


def test_initial_downtime_carryover():
    doc = single_unit_document(4, demand=50., **{'Initial status (h)': -1,
                                                 'Minimum downtime (h)': 3})
    _, solution = solve_document(doc)

    np.testing.assert_array_equal(solution.commitment[0], [0, 0, 1, 1])
    np.testing.assert_allclose(solution.curtailment[0], [50., 50., 0., 0.])


def test_must_run_and_fixed_commitment():
    doc = single_unit_document(3, points=[0., 100.], costs=[100., 1100.],
                               **{'Must run?': True})
    solver, solution = solve_document(doc)

    np.testing.assert_array_equal(solution.commitment[0], [1, 1, 1])
    assert solver.constraints.count('must_run') == 3

    doc = single_unit_document(3, demand=20., **{
        'Commitment status': [None, 0, None]})
    solver, solution = solve_document(doc)

    np.testing.assert_array_equal(solution.commitment[0], [1, 0, 1])
    assert solver.constraints.count('fixed_commitment') == 1


def test_ramping_limits():
    doc = single_unit_document(3, demand=50., **{'Ramp up limit (MW)': 20.,
                                                 'Initial power (MW)': 10.})
    _, solution = solve_document(doc)

    np.testing.assert_allclose(solution.dispatch[0], [30., 50., 50.],
                               atol=1e-6)
    np.testing.assert_allclose(solution.curtailment[0], [20., 0., 0.],
                               atol=1e-6)


def test_startup_and_shutdown_limits():
    doc = single_unit_document(3, demand=[50., 50., 0.], points=[10., 100.],
                               costs=[0., 900.],
                               **{'Startup limit (MW)': 30.,
                                  'Shutdown limit (MW)': 40.,
                                  'Initial status (h)': -2})
    _, solution = solve_document(doc)

    # the unit can only start at 30 MW and must drop to 40 MW before stopping
    np.testing.assert_allclose(solution.dispatch[0], [30., 40., 0.],
                               atol=1e-6)
    np.testing.assert_allclose(solution.curtailment[0], [20., 10., 0.],
                               atol=1e-6)


def test_reserve_shortfall():
    doc = grid_document(
        T=1, buses={'b1': {'Load (MW)': 90.}},
        generators={'g1': thermal_gen(**{'Reserve eligibility': ['r1'],
                                         'Initial power (MW)': 90.})},
        Reserves={'r1': {'Amount (MW)': 20.,
                         'Shortfall penalty ($/MW)': 50.}}
        )
    solver, solution = solve_document(doc)

    np.testing.assert_allclose(solution.reserve[0], [10.], atol=1e-6)
    np.testing.assert_allclose(solution.reserve_shortfall[0], [10.],
                               atol=1e-6)
    assert solution.objective_value == pytest.approx(1400.)
    assert solver.constraints.count('reserve_requirement') == 1


def test_reserves_only_count_for_eligible_requirements():
    reserves = {'r1': {'Amount (MW)': 20., 'Shortfall penalty ($/MW)': 50.},
                'r2': {'Amount (MW)': 10.}}
    doc = grid_document(
        T=1, buses={'b1': {'Load (MW)': 50.}},
        generators={'g1': thermal_gen(**{'Reserve eligibility': ['r2'],
                                         'Initial power (MW)': 50.})},
        Reserves=reserves
        )
    solver, solution = solve_document(doc)

    # nothing can provide r1, so all of it falls short
    np.testing.assert_allclose(solution.reserve_shortfall[:, 0], [20., 0.],
                               atol=1e-6)
    assert solution.reserve_by_requirement[1][0, 0] >= 10. - 1e-6
    np.testing.assert_array_equal(solution.reserve_by_requirement[0], 0.)
    assert solution.objective_value == pytest.approx(500. + 20. * 50.)

    r1_row = solver.model.getRow(
        solver.constraints.constrs['reserve_requirement'][0])
    assert [r1_row.getVar(i).VarName for i in range(r1_row.size())] == [
        'reserve_shortfall[0]']


def test_reserve_is_not_counted_twice():
    reserves = {'r1': {'Amount (MW)': 30., 'Shortfall penalty ($/MW)': 50.},
                'r2': {'Amount (MW)': 30.}}
    doc = grid_document(
        T=1, buses={'b1': {'Load (MW)': 50.}},
        generators={'g1': thermal_gen(**{'Reserve eligibility': ['r1', 'r2'],
                                         'Initial power (MW)': 50.})},
        Reserves=reserves
        )
    _, solution = solve_document(doc)

    # 50 MW of headroom are split between the two requirements
    np.testing.assert_allclose(solution.reserve[0], [50.], atol=1e-6)
    np.testing.assert_allclose(solution.reserve_shortfall[:, 0], [10., 0.],
                               atol=1e-6)
    assert solution.objective_value == pytest.approx(500. + 10. * 50.)


def test_profiled_and_price_sensitive_loads():
    doc = grid_document(
        T=2, buses={'b1': {'Load (MW)': 50.}},
        generators={'g1': thermal_gen(**{'Initial power (MW)': 50.}),
                    'wind': {'Type': 'Profiled', 'Bus': 'b1',
                             'Minimum power (MW)': [5., 0.],
                             'Maximum power (MW)': [30., 0.]}},
        **{'Price-sensitive loads': {'d1': {'Bus': 'b1', 'Demand (MW)': 20.,
                                           'Revenue ($/MW)': [50., 5.]}}}
        )
    _, solution = solve_document(doc)

    # load is only served while its revenue exceeds the cost of producing it

    np.testing.assert_allclose(solution.profiled_output[0], [30., 0.],
                               atol=1e-6)
    np.testing.assert_allclose(solution.psl_served[0], [20., 0.], atol=1e-6)
    np.testing.assert_allclose(solution.dispatch[0], [40., 50.], atol=1e-6)
    assert solution.objective_value == pytest.approx(400. - 1000. + 500.)


def test_network_constraint_counts():
    doc = grid_document(
        T=2, buses={'b1': {}, 'b2': {}, 'b3': {}}, lines=triangle_lines(),
        generators={'g1': thermal_gen('b1')},
        Contingencies={f'c{i}': {'Affected lines': [f'l{i}']}
                       for i in range(1, 4)}
        )

    uc, constraints = build_constraints(doc)
    assert len(uc.relevant_pairs) == 6
    assert constraints.count('flow_upper') == constraints.count(
        'flow_lower') == 3 * 2
    assert constraints.count('contingency_upper') == 6 * 2

    # nothing is left to constrain once every factor is cut off
    sparse_config = replace_config(ModelConfig(), ptdf_sparsity_cutoff=1.1)
    uc, constraints = build_constraints(doc, sparse_config)
    assert constraints.count('flow_upper') == 0
    assert constraints.count('contingency_upper') == 0
    assert all(flow is None for flow in constraints.flows.values())
