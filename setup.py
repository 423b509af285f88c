from setuptools import setup, find_packages

setup(
    name="boundopt",
    version="0.1.0",
    packages=find_packages(exclude=["test", "test.*"]),
    install_requires=["numpy", "scipy", "matplotlib"],
    extras_require={"test": ["pytest"]},
    author="Your Name",
    description="Active set quasi-Newton optimization subject to bounds on the variables",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License"
    ]
)
