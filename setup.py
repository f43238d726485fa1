from setuptools import setup, find_packages

setup(
    name="pbgateway",
    version="1.0.0",
    packages=find_packages(include=["pbgateway", "pbgateway.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "starlette",
        "pydantic>=2",
        "pydantic-settings",
        "httpx",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "respx",
        ],
    },
)
