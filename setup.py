from setuptools import setup, find_packages

setup(
    name="vessel_tracing",
    version="0.1",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        'numpy',
        'SimpleITK',
        'scipy',
        'tqdm'
    ],
    extras_require={
        'test': ['pytest'],
    },
)
