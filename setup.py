#!/usr/bin/env python

from pathlib import Path

from setuptools import find_packages, setup

this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="openqdyn",
    version="0.1.0",
    license="MIT",
    packages=find_packages("src"),
    package_dir={"": "src"},
    keywords="simulation open-quantum-systems master-equation quantum-annealing",
    python_requires=">=3.10",
    install_requires=["numpy", "scipy", "pint", "tqdm"],
    extras_require={"test": ["pytest", "mpmath"]},
    package_data={"openqdyn": ["data_files/*.json"]},
    include_package_data=True,
    long_description=long_description,
    long_description_content_type="text/markdown",
)

# Build with:
# python setup.py sdist
#
# Local install with:
# pip install dist/*.tar.gz --user
