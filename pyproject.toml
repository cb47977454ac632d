[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "uobf"
version = "0.1.0"
description = "Scan, filter and overwrite files in bulk, remembering which files were already processed"
requires-python = ">=3.10"
dependencies = []
keywords = ["batch", "overwrite", "files", "incremental", "workflow", "status"]
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
    "Topic :: System :: Filesystems",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["uobf"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
