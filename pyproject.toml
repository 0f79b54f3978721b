[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "alignomatic"
version = "0.2.0"
description = "Sort paired-end reads into mapped, unmapped and fragmentary groups using their alignments against a series of references"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "bioinformatics",
    "fastq",
    "bam",
    "bgzf",
    "read-mapping",
    "unmapped-reads",
    "paired-end",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["alignomatic"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]
