[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "permitdesk"
version = "0.1.0"
description = "Self-hosted permit and license tracking with a JSON API and web dashboard"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["permits", "licenses", "tracking", "self-hosted", "sqlite", "dashboard", "wsgi"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Web Environment",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
permitdesk = "permitdesk.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["permitdesk"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
