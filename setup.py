# setup.py

from setuptools import setup, find_packages

setup(
    name="krgain",
    version="0.1.0",
    packages=find_packages(exclude=["tests*", "configs*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "matplotlib",
        "scipy",
        "lmfit",
        "pandas",
        "pyyaml",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-cov",
        ]
    },
    entry_points={
        "console_scripts": [
            "krgain-calibrate=KrGain.scripts.run_calibration:main",
        ]
    },
)
