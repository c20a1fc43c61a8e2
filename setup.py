from setuptools import setup, find_packages


setup(
    name="tarlz",
    version="0.1",
    packages=find_packages(include=["tarlz", "tarlz.*"]),
    description="Named-entry access to LZMA, lzip and xz compressed tar containers.",
    author="vercingetorx",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "tarlz=tarlz.cli:main",
        ]
    },
)
