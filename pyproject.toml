[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "chmigrate"
version = "0.1.0"
description = "Command-line tool that applies numbered SQL migrations to ClickHouse over its HTTP interface and tracks them in a schema table"
requires-python = ">=3.10"
dependencies = [
    "click",
    "requests",
]
keywords = ["clickhouse", "migrations", "schema", "database", "cli"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
chmigrate = "chmigrate.cli:main"
clickhouse-cli = "chmigrate.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["chmigrate"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
