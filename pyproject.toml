[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flowmaster"
version = "0.1.0"
description = "Server-master core for a dataflow engine: executor tracking, capacity scheduling, job state machine and leader-aware request handling"
requires-python = ">=3.11"
keywords = [
    "dataflow",
    "scheduler",
    "executor",
    "cluster",
    "leader",
    "distributed",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]
dependencies = [
    "tomli-w",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["flowmaster"]

[tool.hatch.build.targets.sdist]
include = [
    "flowmaster",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
