[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fasthttpkit"
version = "0.1.0"
description = "In-memory connection pipes and listeners, plus building blocks for serving static files over HTTP"
requires-python = ">=3.10"
dependencies = []
keywords = ["http", "static-files", "pipe", "in-memory", "listener", "byte-range", "gzip"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["fasthttpkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
