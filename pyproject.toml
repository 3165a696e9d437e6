[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "blocky"
version = "0.1.0"
description = "DNS proxy and ad-blocker toolkit: configuration, list caches, REST endpoints, metrics and a control CLI"
requires-python = ">=3.10"
keywords = ["dns", "proxy", "ad-blocker", "blocklist", "doh", "prometheus"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "pyyaml",
    "requests",
    "dnspython",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
blocky = "blocky.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["blocky"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
