from setuptools import setup, find_packages

setup(
    name="bundlehost",
    version="0.1.0",
    description="bundlehost - downloads, installs and serves a versioned resource bundle for a host shell",
    author="bundlehost Team",
    package_dir={"": "src"},
    packages=find_packages("src"),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "typer>=0.16.0",
        "rich>=13.7.1",
        "python-dotenv>=1.0.1",
        "httpx>=0.27.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.3.2",
            "pytest-asyncio>=0.23.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bundlehost=bundlehost.apps.cli.app:app",  # `bundlehost` command
        ],
    },
)
