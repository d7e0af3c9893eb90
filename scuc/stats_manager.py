"""Reporting and saving the schedules found by unit commitment solves."""

from __future__ import annotations

import bz2
import json
import logging
from pathlib import Path
from typing import Union

import dill as pickle
import pandas as pd

from .engines import UCSolution
from .model_data import UCInputData

logger = logging.getLogger(__name__)


class SolutionExporter:
    """Turns a solved schedule into summary tables and output files.

    Args
    ----
        output_max_decimals     Precision used for values saved to file.

    """

    def __init__(self, output_max_decimals: int = 5) -> None:
        self.output_max_decimals = output_max_decimals

    def _round(self, value: float) -> float:
        return round(float(value), self.output_max_decimals)

    def report(self, uc: UCInputData, solution: UCSolution) -> dict:
        summary = {
            'Status': solution.status,
            'Objective': solution.objective_value,
            'Gap': solution.mip_gap,
            'Demand': float(uc.system_demand.sum()),
            'Thermal Production': float(solution.dispatch.sum()),
            'Profiled Production': float(solution.profiled_output.sum()),
            'Price-sensitive Load Served': float(solution.psl_served.sum()),
            'Curtailment': float(solution.curtailment.sum()),
            'Reserve Shortfall': float(solution.reserve_shortfall.sum()),
            'Startups': int(solution.startup.sum()),
            'Base Violations': float(solution.base_violations.sum()),
            'Contingency Violations': float(
                solution.contingency_violations.sum()),
            }

        logger.info("Solution %s with objective %.2f: %.1f MWh thermal and "
                    "%.1f MWh profiled production for %.1f MWh of demand",
                    summary['Status'], summary['Objective'],
                    summary['Thermal Production'],
                    summary['Profiled Production'], summary['Demand'])

        if summary['Curtailment'] > 0:
            logger.warning("%.2f MWh of load was curtailed",
                           summary['Curtailment'])

        if summary['Base Violations'] + summary['Contingency Violations'] > 0:
            logger.warning("Line flow limits were exceeded by %.2f MW in the "
                           "base case and %.2f MW after contingencies",
                           summary['Base Violations'],
                           summary['Contingency Violations'])

        return summary

    def thermal_detail(self, uc: UCInputData,
                       solution: UCSolution) -> pd.DataFrame:
        return pd.DataFrame.from_records([
            {'Generator': gen.name, 'Bus': gen.bus, 'Hour': t,
             'Commitment': int(solution.commitment[gi, t]),
             'Startup': int(solution.startup[gi, t]),
             'Dispatch (MW)': self._round(solution.dispatch[gi, t]),
             'Reserve (MW)': self._round(solution.reserve[gi, t])}
            for gi, gen in enumerate(uc.thermal_gens) for t in range(uc.T)
            ], columns=['Generator', 'Bus', 'Hour', 'Commitment', 'Startup',
                        'Dispatch (MW)', 'Reserve (MW)'])

    def report_tables(self, uc: UCInputData,
                      solution: UCSolution) -> dict[str, pd.DataFrame]:
        report_dfs = dict()

        report_dfs['summary'] = pd.DataFrame.from_records(
            [self.report(uc, solution)])
        report_dfs['thermal_detail'] = self.thermal_detail(uc, solution)

        report_dfs['renew_detail'] = pd.DataFrame.from_records([
            {'Generator': gen.name, 'Hour': t,
             'Output': self._round(solution.profiled_output[i, t]),
             'Curtailment': self._round(gen.p_max[t]
                                        - solution.profiled_output[i, t])}
            for i, gen in enumerate(uc.profiled_gens) for t in range(uc.T)
            ])

        report_dfs['bus_detail'] = pd.DataFrame.from_records([
            {'Bus': bus, 'Hour': t,
             'Demand': self._round(uc.nodal_demand[t, b]),
             'Curtailment': self._round(solution.curtailment[b, t])}
            for b, bus in enumerate(uc.buses) for t in range(uc.T)
            ])

        report_dfs['line_detail'] = pd.DataFrame.from_records([
            {'Line': line.name, 'Hour': t,
             'Flow': self._round(solution.base_flows[l, t]),
             'Violation': self._round(solution.base_violations[l, t])}
            for l, line in uc.iter_lines() for t in range(uc.T)
            ])

        return report_dfs

    def save_solution_json(self, uc: UCInputData, solution: UCSolution,
                           path: Union[str, Path]) -> None:
        """Writes every solution value keyed by entity name and hour."""

        def series(values) -> list[float]:
            return [self._round(x) for x in values]

        thermal = {gen.name: {
            'Commitment': [int(x) for x in solution.commitment[gi]],
            'Startup': [int(x) for x in solution.startup[gi]],
            'Production (MW)': series(solution.dispatch[gi]),
            'Segment production (MW)': [
                series(seg) for seg in solution.segment_dispatch[gi]],
            'Startup category': [
                [int(x) for x in cat]
                for cat in solution.startup_category[gi]],
            'Reserve (MW)': series(solution.reserve[gi])}
            for gi, gen in enumerate(uc.thermal_gens)}

        cont_violations = {
            f'{uc.lines[pair.k]}/{uc.lines[pair.l]}': series(
                solution.contingency_violations[c])
            for c, pair in enumerate(uc.relevant_pairs)
            }

        output = {
            'Status': solution.status,
            'Objective value': solution.objective_value,
            'MIP gap': solution.mip_gap,
            'Thermal generators': thermal,
            'Profiled generators': {
                gen.name: series(solution.profiled_output[i])
                for i, gen in enumerate(uc.profiled_gens)},
            'Price-sensitive loads': {
                load.name: series(solution.psl_served[i])
                for i, load in enumerate(uc.psl)},
            'Curtailment (MW)': {
                bus: series(solution.curtailment[b])
                for b, bus in enumerate(uc.buses)},
            'Reserve (MW)': {
                req.name: {
                    uc.thermal_gens[gi].name: series(
                        solution.reserve_by_requirement[q][gi])
                    for gi in uc.reserve_providers(q)
                    }
                for q, req in enumerate(uc.reserves)},
            'Reserve shortfall (MW)': {
                req.name: series(solution.reserve_shortfall[q])
                for q, req in enumerate(uc.reserves)},
            'Line flows (MW)': {
                line: series(solution.base_flows[l])
                for l, line in enumerate(uc.lines)},
            'Base violations (MW)': {
                line: series(solution.base_violations[l])
                for l, line in enumerate(uc.lines)},
            'Contingency violations (MW)': cont_violations,
            }

        with open(path, 'w') as f:
            json.dump(output, f, indent=2)

        logger.info("Saved solution to `%s`", path)

    def save_dispatch_csv(self, uc: UCInputData, solution: UCSolution,
                          path: Union[str, Path]) -> None:
        self.thermal_detail(uc, solution).to_csv(path, index=False)
        logger.info("Saved dispatch table to `%s`", path)

    def save_report_archive(self, uc: UCInputData, solution: UCSolution,
                            path: Union[str, Path]) -> None:
        report_dfs = self.report_tables(uc, solution)

        with bz2.BZ2File(path, 'w') as f:
            pickle.dump(report_dfs, f, protocol=-1)

        logger.info("Saved report tables to `%s`", path)
