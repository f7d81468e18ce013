[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "bbkcli"
version = "1.0.0"
description = "Option handling and terminal client for a broadband measurement agent, with a small task and event loop framework"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "broadband",
    "speed test",
    "measurement",
    "event loop",
    "tasks",
    "network monitoring",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: End Users/Desktop",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["bbkcli"]

[tool.hatch.build.targets.sdist]
include = ["bbkcli", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
