from setuptools import setup, find_packages

setup(
    name="fieldgen-emulator",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "numpy>=1.21.0",
        "pandas>=1.3.0",
        "scipy>=1.7.0",
        "scikit-learn>=0.24.0",
    ],
    extras_require={
        "io": [
            "xarray>=0.19.0",
            "netCDF4>=1.5.0",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    author="Your Name",
    description="Statistical emulator for Earth System Model temperature and precipitation fields",
    python_requires=">=3.8",
)
