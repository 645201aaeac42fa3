[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hothproto"
version = "0.1.0"
description = "Host command protocol for Hoth root-of-trust devices: framing, checksums and command helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["hoth", "root-of-trust", "host-command", "firmware", "spi", "i2c", "embedded"]
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
    "Topic :: Software Development :: Embedded Systems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["hothproto"]

[tool.pytest.ini_options]
addopts = "-ra"
