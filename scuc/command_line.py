"""Interfaces for solving unit commitment problems from the command line."""

import argparse
import logging
import sys
from pathlib import Path

from .config import ModelConfig
from .errors import ScucError
from .engines import SCUCSolver
from .stats_manager import SolutionExporter

logger = logging.getLogger(__name__)

LOG_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG]


def run_scuc(args=None):
    """The interface for running the command `scuc-solve`."""

    parser = argparse.ArgumentParser(
        "scuc-solve",
        description="Solve a security-constrained unit commitment problem."
        )

    parser.add_argument("input_file", type=Path,
                        help="the JSON document describing the power grid")

    parser.add_argument("--out-dir", "-o", type=Path, dest="out_dir",
                        help="directory where output will be stored; by "
                             "default results/<input directory name>/")

    # solver hyper-parameters
    parser.add_argument("--solver-time-limit", type=float, default=600,
                        dest="time_limit",
                        help="how many seconds the MILP solver may run for")
    parser.add_argument("--mipgap", "-g", type=float, default=0.01,
                        help="the relative optimality gap at which the "
                             "solver may stop")
    parser.add_argument("--threads", "-t", type=int, default=1,
                        help="how many compute cores the solver may use")

    # how dense the network security constraints are allowed to get
    parser.add_argument("--ptdf-cutoff", type=float, default=0.01,
                        dest="ptdf_cutoff",
                        help="PTDF entries smaller than this are ignored")
    parser.add_argument("--lodf-cutoff", type=float, default=0.05,
                        dest="lodf_cutoff",
                        help="LODF entries smaller than this are ignored")
    parser.add_argument("--fail-on-islanding", action='store_true',
                        dest="fail_on_islanding",
                        help="stop instead of skipping contingencies whose "
                             "outage would island part of the network")

    parser.add_argument("--archive", action='store_true',
                        help="also save the report tables as a compressed "
                             "Python pickle")
    parser.add_argument("--verbose", "-v", action='count', default=0,
                        help="how much info to print about model "
                             "construction and solving")

    args = parser.parse_args(args)
    logging.basicConfig(level=LOG_LEVELS[min(args.verbose, 2)],
                        format='%(asctime)s %(name)s %(levelname)s: '
                               '%(message)s')

    if args.out_dir:
        out_dir = args.out_dir
    else:
        out_dir = Path('results', args.input_file.absolute().parent.name)

    config = ModelConfig(
        input_data_path=args.input_file, solver_time_limit_sec=args.time_limit,
        relative_gap=args.mipgap, threads=args.threads,
        solver_output=args.verbose >= 2,
        ptdf_sparsity_cutoff=args.ptdf_cutoff,
        lodf_sparsity_cutoff=args.lodf_cutoff,
        fail_on_islanding=args.fail_on_islanding
        )

    try:
        solver = SCUCSolver(config)
        solver.solve()
        solution = solver.solution()

        out_dir.mkdir(parents=True, exist_ok=True)
        exporter = SolutionExporter()
        exporter.report(solver.uc, solution)

        exporter.save_solution_json(
            solver.uc, solution, Path(out_dir, config.solution_output_filename))
        exporter.save_dispatch_csv(
            solver.uc, solution, Path(out_dir, config.dispatch_csv_filename))

        if args.archive:
            exporter.save_report_archive(solver.uc, solution,
                                         Path(out_dir, "output.p.gz"))

    except ScucError as err:
        logger.error("%s: %s", type(err).__name__, err)
        sys.exit(1)

    for phase, phase_time in solver.timings.items():
        logger.info("%s took %.3f seconds", phase, phase_time)
