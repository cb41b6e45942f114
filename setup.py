from setuptools import setup, find_packages

setup(
    name="transition_convexity",
    version="0.1.0",
    description="Benchmark transition convexity adjustment under Gaussian short-rate models",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
    ],
    extras_require={
        "test": ["pytest"],
    },
    python_requires=">=3.8",
)
