[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rasmon"
version = "0.1.0"
description = "Decoding of kernel RAS hardware error trace events and per-CPU fault isolation"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "ras",
    "edac",
    "cxl",
    "extlog",
    "devlink",
    "tracing",
    "hardware errors",
    "monitoring",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["rasmon"]

[tool.pytest.ini_options]
addopts = "-ra"
