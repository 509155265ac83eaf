"""Setup script for Space-Time Multigrid for Optimal Control."""

from setuptools import setup, find_packages
from pathlib import Path

# Read README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text() if (this_directory / "README.md").exists() else ""

setup(
    name="spacetime-multigrid",
    version="0.3.0",
    description="Space-time multigrid solvers for parabolic optimal control problems",
    long_description=long_description,
    long_description_content_type="text/markdown",

    packages=find_packages(where="src"),
    package_dir={"": "src"},

    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.21.0,<2.0",
        "scipy>=1.9.0",
        "pyyaml>=6.0",
    ],

    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Mathematics",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: OS Independent",
    ],

    keywords=[
        "multigrid", "space-time", "optimal-control", "pde", "parabolic",
        "numerical-methods", "finite-difference", "scientific-computing"
    ],

    package_data={
        "spacetime_mg": ["config/*.yaml", "config/*.json"],
    },

    include_package_data=True,
    zip_safe=False,
)
