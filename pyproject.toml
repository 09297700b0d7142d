[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "raftshard"
version = "0.1.0"
description = "Raft consensus peer with client-side clerks for a shard controller and a sharded key/value service"
requires-python = ">=3.10"
dependencies = []
keywords = ["raft", "consensus", "distributed", "sharding", "key-value", "replication"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
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
packages = ["raftshard"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
