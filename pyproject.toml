[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pumpsim"
version = "0.1.0"
description = "Controller logic for a simulated insulin pump: alerts, bolus calculation, profiles and pump simulation."
requires-python = ">=3.10"
keywords = ["insulin pump", "simulation", "diabetes", "bolus", "glucose"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Education",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Medical Science Apps.",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pumpsim"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
