[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appsuite"
version = "0.1.0"
description = "Game-review statistics and a replicated delivery-app server with ring leader election"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "reviews",
    "statistics",
    "leader-election",
    "ring-algorithm",
    "asyncio",
    "replication",
]
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
    "Framework :: AsyncIO",
    "Topic :: System :: Distributed Computing",
    "Topic :: Scientific/Engineering :: Information Analysis",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
appsuite-server = "appsuite.server.node:main"

[tool.hatch.build.targets.wheel]
packages = ["appsuite"]

[tool.hatch.build.targets.sdist]
include = ["appsuite", "tests", "README.md"]

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
