[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ngmonitor"
version = "0.1.0"
description = "Monitoring sidecar server with shared configuration, persisted profiling settings, PD variable loading, SQLite document storage upkeep and an HTTP API."
requires-python = ">=3.11"
dependencies = []
keywords = ["monitoring", "configuration", "profiling", "http", "server", "sqlite"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ngmonitor = "ngmonitor.server:main"

[tool.hatch.build.targets.wheel]
packages = ["ngmonitor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
