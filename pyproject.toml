[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kfg"
version = "0.1.0"
description = "Declarative shell workflow manifests: parsing, validation, resolution and Imagefile parsing"
requires-python = ">=3.10"
keywords = ["shell", "manifest", "workflow", "yaml", "imagefile", "code-generation"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Code Generators",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["kfg"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
