[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wingsd"
version = "0.1.0"
description = "Sandboxed server data directories: safe path resolution, disk quotas, archives and backups."
requires-python = ">=3.10"
keywords = ["filesystem", "sandbox", "disk-quota", "backup", "archive", "tar", "s3", "game-server"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: System :: Archiving :: Backup",
]
dependencies = [
    "requests>=2.28",
    "backoff>=2.2",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
    "responses>=0.23",
]

[tool.hatch.build.targets.wheel]
packages = ["wingsd"]

[tool.hatch.build.targets.sdist]
include = ["wingsd", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
