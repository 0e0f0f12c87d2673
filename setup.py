from setuptools import find_packages, setup

setup(
    name="netftp-storage",
    version="0.1.0",
    description="FTP and FTPS file storage backend with transactional writes",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[],
    python_requires=">=3.10",
    extras_require={
        "dev": [
            "pytest",
            "pyftpdlib[ssl]",
            "cryptography",
            "build",
            "twine",
        ],
    },
)
