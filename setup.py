from setuptools import setup, find_packages

setup(
    name="chunked-request",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "httpx>=0.27",
        "pydantic>=2.5",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "pytest-httpx>=0.30",
            "hypothesis>=6.90",
        ],
    },
    author="chunked-request contributors",
    description="Incrementally decode NDJSON records from streaming HTTP responses.",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.10",
)
