"""
Setup script for credible-backtest.
"""
import pathlib

from setuptools import find_packages, setup


def read_requirements(path):
    lines = pathlib.Path(path).read_text().splitlines()
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


install_requires = read_requirements("requirements.txt")
test_requires = read_requirements("dev-requirements.txt")

setup(
    name="credible_backtest",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={
        "": "src",
    },
    include_package_data=True,
    zip_safe=False,
    install_requires=install_requires,
    extras_require={
        "test": test_requires,
    },
    entry_points={
        "console_scripts": [
            "transaction-fetcher=credible_backtest.cli:fetcher_main",
            "trace-support-harness=credible_backtest.cli:probe_main",
        ],
    },
    python_requires=">=3.10",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
