[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "yab"
version = "0.1.0"
description = "Building blocks for RPC benchmarking: serializers, input decoding, streaming call drivers and latency reporting"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["benchmark", "rpc", "latency", "load-testing", "streaming", "json", "yaml"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Benchmark",
    "Topic :: Software Development :: Testing :: Traffic Generation",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["yab"]

[tool.hatch.build.targets.sdist]
include = [
    "yab",
    "tests",
]

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
