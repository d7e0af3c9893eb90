"""End-to-end solves of small grids, and saving their schedules."""

import json

import numpy as np
import pandas as pd
import pytest

from scuc.command_line import run_scuc
from scuc.config import ModelConfig
from scuc.engines import SCUCSolver
from scuc.errors import (InputFormatError, ModelConstructionError,
                         SolverStatusError)
from scuc.input.loaders import JsonGridLoader
from scuc.stats_manager import SolutionExporter

from .compare_outputs import compare_archives, load_archive
from .grids import (requires_gurobi, grid_document, thermal_gen,
                    triangle_lines, single_bus_document, two_bus_document,
                    solve_document)


def triangle_document(emergency_limit):
    return grid_document(
        T=1, buses={'b1': {}, 'b2': {'Load (MW)': 90.}, 'b3': {}},
        lines=triangle_lines(**{'Normal flow limit (MW)': 100.,
                                'Emergency flow limit (MW)': emergency_limit}),
        generators={'cheap': thermal_gen('b1'),
                    'local': thermal_gen('b2', costs=[0., 2000.])},
        Contingencies={f'c{i}': {'Affected lines': [f'l{i}']}
                       for i in range(1, 4)}
        )


@requires_gurobi
def test_single_bus_scenario():
    solver, solution = solve_document(single_bus_document())

    assert solution.status == 'optimal'
    # 50 MW at 10 $/MW in each of the two hours
    assert solution.objective_value == pytest.approx(1000.)
    np.testing.assert_array_equal(solution.commitment[0], [1, 1])
    np.testing.assert_allclose(solution.dispatch[0], [50., 50.])
    assert set(solver.timings) == {'Load', 'Variables', 'Objective',
                                   'Constraints', 'Solve'}


@requires_gurobi
def test_two_bus_congested_line():
    _, solution = solve_document(two_bus_document())

    # violating the line limit is cheaper than shedding load behind it
    assert solution.objective_value == pytest.approx(100. * 10. + 50. * 1e4)
    np.testing.assert_allclose(solution.base_flows[0], [100.], atol=1e-6)
    np.testing.assert_allclose(solution.base_violations[0], [50.], atol=1e-6)
    np.testing.assert_allclose(solution.curtailment, 0., atol=1e-6)


@requires_gurobi
def test_two_bus_islanding_contingency_is_ignored():
    doc = two_bus_document()
    doc['Contingencies'] = {'c1': {'Affected lines': ['AB']}}
    _, solution = solve_document(doc)

    assert solution.contingency_violations.shape == (0, 1)
    assert solution.objective_value == pytest.approx(501000.)


@requires_gurobi
def test_contingencies_redispatch_generation():
    _, solution = solve_document(triangle_document(emergency_limit=100.))

    assert solution.objective_value == pytest.approx(900.)
    np.testing.assert_allclose(solution.dispatch[:, 0], [90., 0.], atol=1e-6)

    # losing any line routes all of the cheap unit's output down one path
    _, solution = solve_document(triangle_document(emergency_limit=70.))

    assert solution.objective_value == pytest.approx(700. + 400.)
    np.testing.assert_allclose(solution.dispatch[:, 0], [70., 20.], atol=1e-6)
    np.testing.assert_allclose(solution.contingency_violations, 0.,
                               atol=1e-6)
    np.testing.assert_allclose(np.abs(solution.base_flows[:, 0]),
                               [140. / 3, 70. / 3, 70. / 3], atol=1e-6)


@requires_gurobi
def test_infeasible_model():
    doc = grid_document(buses={'b1': {'Load (MW)': 50.}},
                        generators={'g1': thermal_gen(
                            points=[100., 200.], costs=[0., 1000.],
                            **{'Must run?': True})})

    with pytest.raises(SolverStatusError) as err:
        solve_document(doc)

    assert err.value.status in {'INFEASIBLE', 'INF_OR_UNBD'}


@requires_gurobi
def test_solver_lifecycle():
    config = ModelConfig()
    solver = SCUCSolver(config,
                        JsonGridLoader(single_bus_document(), config).load())

    with pytest.raises(SolverStatusError):
        solver.solution()

    solver.build()
    with pytest.raises(ModelConstructionError):
        solver.build()

    outcome = solver.solve()
    assert outcome.status == 'optimal'
    assert outcome.mip_gap <= config.relative_gap
    assert outcome.solve_time == solver.timings['Solve']


def test_solver_needs_input():
    with pytest.raises(InputFormatError):
        SCUCSolver(ModelConfig())


@requires_gurobi
def test_exported_files(tmp_path):
    solver, solution = solve_document(two_bus_document())
    exporter = SolutionExporter()

    summary = exporter.report(solver.uc, solution)
    assert summary['Base Violations'] == pytest.approx(50.)

    exporter.save_solution_json(solver.uc, solution, tmp_path / "sol.json")
    with open(tmp_path / "sol.json") as f:
        output = json.load(f)

    assert output['Objective value'] == pytest.approx(501000.)
    assert output['Thermal generators']['g1']['Production (MW)'] == [100.]
    assert output['Line flows (MW)']['AB'] == [100.]

    exporter.save_dispatch_csv(solver.uc, solution, tmp_path / "dispatch.csv")
    dispatch = pd.read_csv(tmp_path / "dispatch.csv")

    assert list(dispatch.columns) == ['Generator', 'Bus', 'Hour',
                                      'Commitment', 'Startup',
                                      'Dispatch (MW)', 'Reserve (MW)']
    assert dispatch.shape[0] == 1
    assert dispatch['Dispatch (MW)'].iloc[0] == pytest.approx(100.)


@requires_gurobi
def test_report_archives_are_reproducible(tmp_path):
    for i in range(2):
        solver, solution = solve_document(single_bus_document())
        SolutionExporter().save_report_archive(solver.uc, solution,
                                               tmp_path / f"out{i}.p.gz")

    compare_archives([tmp_path / "out0.p.gz", tmp_path / "out1.p.gz"])
    tables = load_archive(tmp_path / "out0.p.gz")
    assert tables['thermal_detail'].shape[0] == 2


@requires_gurobi
def test_command_line(tmp_path):
    input_file = tmp_path / "grid.json"
    with open(input_file, 'w') as f:
        json.dump(single_bus_document(), f)

    out_dir = tmp_path / "out"
    run_scuc([str(input_file), '--out-dir', str(out_dir), '--archive'])

    assert (out_dir / "solution_output.json").is_file()
    assert (out_dir / "dispatch.csv").is_file()
    assert (out_dir / "output.p.gz").is_file()


def test_command_line_errors(tmp_path):
    with pytest.raises(SystemExit) as err:
        run_scuc([str(tmp_path / "missing.json")])
    assert err.value.code == 1

    with pytest.raises(SystemExit) as err:
        run_scuc(['--mipgap', 'tight'])
    assert err.value.code == 2
