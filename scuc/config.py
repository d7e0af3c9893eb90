"""Runtime settings shared by the loader, the model builders and the solver."""

from __future__ import annotations

from collections import namedtuple


ModelConfig = namedtuple(
    'ModelConfig',
    ['input_data_path', 'solution_output_filename', 'dispatch_csv_filename',
     'solver_time_limit_sec', 'relative_gap', 'threads', 'solver_output',
     'default_line_limit_mw', 'default_flow_penalty', 'curtail_penalty',
     'ptdf_sparsity_cutoff', 'lodf_sparsity_cutoff', 'lodf_singularity_tol',
     'fail_on_islanding'],

    defaults=[None, 'solution_output.json', 'dispatch.csv',
              600, 0.01, 1, False,
              1e4, 1e4, 1e5,
              0.01, 0.05, 1e-6,
              False]
    )

ModelConfig.__doc__ = """Immutable settings handed to every component that needs defaults.

    input_data_path             Where the JSON grid document is read from.
    solution_output_filename    Where the solution document is written.
    dispatch_csv_filename       Where the generator dispatch table is written.

    solver_time_limit_sec       Wall-clock limit handed to the MILP solver.
    relative_gap        Target relative optimality gap (best-effort).
    threads             How many cores the solver may use.
    solver_output       Whether to let the solver print its own log.

    default_line_limit_mw       Flow limit of lines which do not declare one.
    default_flow_penalty        $/MW cost of exceeding a line flow limit.
    curtail_penalty             $/MWh cost of failing to serve load.

    ptdf_sparsity_cutoff        PTDF entries smaller than this are zeroed.
    lodf_sparsity_cutoff        LODF entries smaller than this are zeroed.
    lodf_singularity_tol        How close to zero the LODF denominator of an
                                outage may get before the outage is treated
                                as islanding the network.
    fail_on_islanding           Raise instead of dropping contingencies whose
                                outage islands the network.
"""


def replace_config(config: ModelConfig, **changes) -> ModelConfig:
    """Returns a copy of the given settings with some fields changed."""
    unknown = set(changes) - set(ModelConfig._fields)

    if unknown:
        raise ValueError("Unrecognized model settings: {}".format(
            ', '.join(sorted(unknown))))

    return config._replace(**changes)
