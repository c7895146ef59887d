[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sidekickrelay"
version = "0.1.0"
description = "Receive Falco security events over HTTP, check them and decide which outputs they go to."
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["falco", "security", "alerting", "alertmanager", "ocsf", "events"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sidekickrelay = "sidekickrelay.server:main"

[tool.hatch.build.targets.wheel]
packages = ["sidekickrelay"]

[tool.pytest.ini_options]
addopts = "-ra"
