from setuptools import setup

with open("mitokens/version.py") as f:
    exec(f.read())

setup(
    name="python-mitokens",
    version=__version__,  # type: ignore # noqa: F821
    description="Python API for fetching device tokens from the Xiaomi cloud",
    author="",
    author_email="",
    license="GPLv3",
    packages=["mitokens"],
    install_requires=[
        "aiohttp>=3",
        "asyncclick>=8.1.8",
        "cryptography>=43",
        "mashumaro>=3.11",
        "multidict",
        "yarl",
    ],
    extras_require={
        "speedups": ["orjson>=3.9.1"],
        "shell": ["rich"],
        "tests": [
            "pytest",
            "pytest-asyncio",
            "pytest-mock",
            "pytest-freezer",
            "freezegun",
        ],
    },
    python_requires=">=3.11",
    entry_points={"console_scripts": ["mitokens=mitokens.cli:cli"]},
    zip_safe=False,
)
