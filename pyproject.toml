[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "groupnotifier"
version = "0.1.0"
description = "Template-driven notifications about consumer group status, sent by e-mail or HTTP"
requires-python = ">=3.10"
dependencies = [
    "jinja2",
]
keywords = ["kafka", "consumer-lag", "monitoring", "notifications", "alerting"]
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

[tool.hatch.build.targets.wheel]
packages = ["groupnotifier"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
