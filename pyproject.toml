[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "euterpe"
version = "0.1.0"
description = "WSGI web interface of a self-hosted music streaming server: browsing, search, file and album downloads, artwork and token-based authentication."
requires-python = ">=3.10"
keywords = ["music", "streaming", "media server", "wsgi", "jwt", "qr code"]
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
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Multimedia :: Sound/Audio :: Players",
]
dependencies = [
    "werkzeug>=2.2",
    "jinja2>=3.0",
    "pyjwt>=2.4",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[tool.hatch.build.targets.wheel]
packages = ["euterpe"]

[tool.hatch.build.targets.sdist]
include = ["euterpe", "tests", "pyproject.toml", "README.md"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
