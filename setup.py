from setuptools import find_packages, setup

setup(
    name="penplot",
    version="0.1.0",
    description="Drive HP-GL pen plotters over a serial line",
    author="Garrett Johnson",
    packages=find_packages(include=["penplot", "penplot.*"]),
    python_requires=">=3.11",
    install_requires=[
        "aioserial==1.3.0",
        "pyserial==3.5",
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
    },
    entry_points={
        "console_scripts": ["penplot=penplot.main:main"],
    },
    tests_require=["pytest", "pytest-asyncio"],
)
