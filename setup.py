import setuptools

with open("lorchestre/.version") as f:
    version = f.read().strip()

setuptools.setup(
    name="lorchestre",
    version=version,
    python_requires=">=3.11.0",
    entry_points={"console_scripts": ["lorchestre = lorchestre.__main__:main"]},
    packages=["lorchestre"],
    package_data={"lorchestre": [".version", "py.typed"]},
    install_requires=[
        "appdirs",
        "click",
        "fastapi>=0.115",
        "mutagen",
        "pillow",
        "tomli-w",
        "uuid6",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "httpx",
            "pytest",
        ],
    },
)
