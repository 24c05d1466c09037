from setuptools import setup, find_packages

setup(
    name="inbound-guard",
    version="0.1",
    packages=find_packages(exclude=['tests', 'tests.*']),
    install_requires=[
        'SQLAlchemy>=2.0.19',
        'python-dateutil>=2.8.2',
        'python-dotenv>=1.0.0',
        'pydantic>=2.6.1',
        'structlog>=23.1.0',
        'openai>=1.12.0',
    ],
    extras_require={
        'test': ['pytest>=7.4', 'httpx>=0.23'],
    },
    entry_points={
        'console_scripts': [
            'inbound-guard=src.main:main',
        ],
    },
)
