[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "okestra"
version = "0.1.0"
description = "Supervisors, process groups and pluggable telemetry for threaded Python services"
requires-python = ">=3.10"
dependencies = []
keywords = ["supervisor", "process-group", "telemetry", "fault-tolerance", "restart-strategy"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["okestra"]

[tool.pytest.ini_options]
addopts = "-ra"
