[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cpuinfo"
version = "0.1.0"
description = "Detect CPU vendor, features, caches, core counts and microarchitecture level"
requires-python = ">=3.10"
dependencies = []
keywords = ["cpu", "cpuid", "features", "x86", "arm64", "avx", "hardware"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
cpuinfo = "cpuinfo.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["cpuinfo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
