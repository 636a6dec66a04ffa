[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "supercache"
version = "0.1.0"
description = "Configuration, logging, peer authentication and a management API for a replicated in-memory cache server"
requires-python = ">=3.11"
dependencies = [
    "pyyaml",
]
keywords = ["cache", "redis", "configuration", "management", "hmac", "backoff"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["supercache"]

[tool.pytest.ini_options]
addopts = "-ra"
