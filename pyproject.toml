[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "actorkit"
version = "0.2.12"
description = "Timer queue and cross-thread wake-up primitives for a single-threaded actor runtime"
requires-python = ">=3.10"
dependencies = []
keywords = ["actor", "runtime", "timers", "waker", "channel", "threads"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["actorkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
