import setuptools

try:
    with open("README.md", "r", encoding="utf-8") as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = "Build labeled model container images with separately cached weights"

setuptools.setup(
    name="modelpack",
    version="0.1.0",
    description="Build labeled model container images with separately cached weights",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=setuptools.find_packages(where="src", include=["modelpack", "modelpack.*"]),
    install_requires=[
        "httpx",
        "jsonschema>=4.18",
        "openapi-spec-validator>=0.7",
        "pathspec",
        "pydantic>=2",
        "python-dotenv",
        "pyyaml",
        "referencing",
        "rich",
        "typer",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "modelpack=modelpack.cli.main:app",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
