[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "packetfilters"
version = "0.1.0"
description = "Composable UDP packet filters: byte concatenation, firewall, load balancing, rate limiting and token routing"
requires-python = ">=3.10"
dependencies = []
keywords = ["udp", "proxy", "filter", "firewall", "load-balancer", "rate-limit"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["packetfilters"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
