[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "orgchart-loader"
version = "0.1.0"
description = "Load government organisation chart transactions from CSV files into an entity graph service"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["organisation chart", "government", "entities", "graph", "csv", "transactions"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Front-Ends",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
orgchart-loader = "orgchart_loader.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["orgchart_loader"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
