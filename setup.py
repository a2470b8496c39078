from setuptools import setup, find_packages

setup(
    name="agentlink",
    version="0.1.0",
    description="Verifiable credentials linking AI agents to verified humans (World ID, Self Protocol)",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "eth-account>=0.10.0,<0.11",
        "eth-utils>=2.0.0,<3",
        "httpx>=0.24.0",
        "fastapi>=0.100.0,<0.137",
        "pydantic>=2.0",
        "slowapi>=0.1.8",
        "python-json-logger>=3.1.0",
        "uvicorn>=0.22.0",
    ],
    extras_require={"dev": ["pytest>=7.0", "pytest-asyncio>=0.21", "respx>=0.20"]},
    entry_points={"console_scripts": ["agentlink=agentlink.cli:run"]},
    python_requires=">=3.9",
    license="CC0-1.0",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security :: Cryptography",
        "Topic :: Software Development :: Libraries",
        "License :: CC0 1.0 Universal (CC0 1.0) Public Domain Dedication",
        "Programming Language :: Python :: 3",
    ],
    keywords="agent identity verifiable-credentials world-id self-protocol ethereum",
)
