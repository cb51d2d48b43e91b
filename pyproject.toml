[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "numakit"
version = "0.1.0"
description = "NUMA topology inspection, node and CPU list parsing, IO affinity lookup and graph benchmark kernels"
requires-python = ">=3.10"
dependencies = []
keywords = ["numa", "affinity", "sysfs", "bitmask", "topology", "graph", "benchmark", "mersenne-twister"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware :: Symmetric Multi-processing",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["numakit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
