from setuptools import find_packages, setup

setup(
    name='rsizevideo',
    version='0.1',
    packages=find_packages(include=['rsizevideo', 'rsizevideo.*']),
    package_data={'rsizevideo': ['templates/*']},
    python_requires='>=3.9',
    install_requires=[
        'fastapi',
        'uvicorn',
        'python-multipart',
        'python-dotenv',
        'requests',
        'jinja2',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
            'httpx',
        ],
    },
)
