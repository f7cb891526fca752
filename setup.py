from setuptools import setup, find_packages

setup(
    name="editor_bridge",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "python-socketio",
        "aiohttp>=3.9",
        "python-dotenv",
        "pydantic",
        "pydantic-settings",
        "opentelemetry-api",
        "opentelemetry-sdk",
        "opentelemetry-exporter-otlp-proto-http",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "bridge-server=bridge.main:main",
            "bridge-editor=bridge.editor.main:main",
            "bridge-cli=bridge.cli:main",
        ],
    },
    python_requires=">=3.10",
)
