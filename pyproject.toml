[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "conductorkit"
version = "0.1.0"
description = "Define workflows as code, run task workers and drive workflow executions through clients of a Conductor-style orchestration server."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "workflow",
    "orchestration",
    "conductor",
    "task-worker",
    "distributed",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["conductorkit"]

[tool.hatch.build.targets.sdist]
include = ["conductorkit", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
