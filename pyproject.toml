[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kindling"
version = "0.1.0"
description = "Building blocks for local Kubernetes clusters on Docker container nodes: node helpers, networking, provisioning plans and config patching"
requires-python = ">=3.11"
dependencies = [
    "pyyaml",
]
keywords = [
    "kubernetes",
    "docker",
    "cluster",
    "containers",
    "haproxy",
    "json-patch",
    "merge-patch",
    "toml",
    "yaml",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kindling"]

[tool.hatch.build.targets.sdist]
include = [
    "kindling",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
warn_redundant_casts = true
