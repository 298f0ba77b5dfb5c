[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "shakesync"
version = "0.1.0"
description = "Building blocks for moving Redis data between instances: option checks, filters, command batching, metrics, scanners, listpack reading and RDB entry rendering"
requires-python = ">=3.10"
dependencies = []
keywords = ["redis", "replication", "sync", "migration", "rdb", "listpack", "filter"]
classifiers = [
    "Development Status :: 4 - Beta",
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
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["shakesync"]

[tool.pytest.ini_options]
addopts = "-ra"
