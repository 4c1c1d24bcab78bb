from setuptools import setup, find_packages

setup(
    name="options-gateway",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "httpx>=0.25.0",
        "aiohttp>=3.9.0",
        "web3>=7.0.0",
        "eth-account>=0.13.0",
        "eth-utils>=4.0.0",
        "eth-abi>=5.0.0",
        "eth-keys>=0.5.0",
        "tenacity>=8.0.0",
        "python-json-logger>=2.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.23.0",
        ],
    },
    python_requires=">=3.9",
    author="PlatformQ Team",
    description="Gateway between signed off-chain option quotes and on-chain option pools",
)
