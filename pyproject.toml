[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "polystac"
version = "0.1.0"
description = "STAC search to OpenSearch query DSL translation with CQL2 filters, plus STAC API compatibility, benchmark-report and seeding tools"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "stac",
    "opensearch",
    "elasticsearch",
    "cql2",
    "geospatial",
    "benchmark",
    "compatibility",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: GIS",
    "Topic :: Software Development :: Testing",
    "Topic :: System :: Benchmark",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
polystac-dropin = "polystac.dropin:main"
polystac-bench-report = "polystac.bench_report:main"
polystac-seed-http = "polystac.seed_http:main"

[tool.hatch.build.targets.wheel]
packages = ["polystac"]

[tool.hatch.build.targets.sdist]
include = ["polystac", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
