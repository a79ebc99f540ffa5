[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cronkeeper"
version = "0.1.0"
description = "Distributed cron building blocks: shell task execution, plan scheduling, workflow state, agent stream registry, temporary tasks and webhooks."
requires-python = ">=3.10"
dependencies = []
keywords = ["cron", "scheduler", "distributed", "workflow", "webhook"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
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
packages = ["cronkeeper"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
