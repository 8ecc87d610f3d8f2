[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "espresso-reader"
version = "0.1.0"
description = "SQLite persistence layer and helpers for a rollups node reader: applications, epochs, inputs, outputs, reports and snapshots."
requires-python = ">=3.10"
dependencies = []
keywords = ["rollups", "repository", "epochs", "inputs", "database", "sqlite", "retry"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["espresso_reader"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]
