from setuptools import setup
import re

# taken from https://stackoverflow.com/questions/458550/standard-way-to-embed-version-into-python-package
VERSIONFILE = "scnull/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

with open("README.md", "r") as f:
    long_description = f.read()

setup(
    name="scnull",
    version=verstr,
    description="Construct synthetic null single-cell datasets that preserve "
                "gene marginals and gene-gene correlation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    install_requires=[
        "joblib",
        "numpy",
        "pandas",
        "psutil",
        "scanpy",
        "scikit-learn",
        "scipy",
        "tqdm",
    ],
    extras_require={
        "test": ["pytest"],
    },
    license="BSD",
    packages=["scnull"],
    package_data={"scnull": ["R/*.R"]},
    python_requires=">=3.8",
    zip_safe=False,
)
