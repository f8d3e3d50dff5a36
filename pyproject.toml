[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wlturbo"
version = "0.1.0"
description = "A pure-Python Wayland client: wire encoding, object proxies, fd passing and shared memory pools"
requires-python = ">=3.10"
dependencies = []
keywords = ["wayland", "compositor", "client", "protocol", "shm"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wlturbo"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
