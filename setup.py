
import setuptools

setuptools.setup(
    name='SCUC',
    version='0.1.0',
    description='security-constrained unit commitment MILP formulation '
                'and solving engine',

    packages=setuptools.find_packages(exclude=["scuc.tests"]),
    entry_points={
        'console_scripts': [
            'scuc-solve=scuc.command_line:run_scuc',
            ],
        },

    python_requires='>=3.9',
    install_requires=['numpy>1.21', 'pandas', 'scipy', 'dill', 'gurobipy',
                      'ordered-set'],
    extras_require={'test': ['pytest']},
    )
