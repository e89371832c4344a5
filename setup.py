# setup.py - 项目打包与安装配置

from setuptools import setup, find_packages

setup(
    name="drawguess-client",
    version="0.1.0",
    description="Real-time sync client engine for a multiplayer draw-and-guess game",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "pygame>=2.1.3",
        "pydantic>=2.0",
    ],
    extras_require={
        "dev": [
            "black==23.9.1",
            "flake8==6.1.0",
            "isort==5.12.0",
            "pytest==7.4.0",
            "pytest-cov==4.1.0",
            "pre-commit==3.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "draw-guess-client=drawguess.client.main:main",
        ],
    },
)
