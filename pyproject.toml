[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tfworkspace"
version = "0.1.0"
description = "Terraform workspace building blocks: main.tf.json and tfstate files, operation tracking, CLI failure errors and shared provider scheduling."
requires-python = ">=3.10"
dependencies = []
keywords = ["terraform", "workspace", "tfstate", "infrastructure", "provider"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["tfworkspace"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
