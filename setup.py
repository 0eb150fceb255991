from setuptools import setup, find_packages

setup(
    name='cloudadaptor',
    version='0.1.0',
    packages=find_packages(),
    include_package_data=True,
    install_requires=[
        'typer[all]',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'paramiko',
        'pydantic>=2',
        'python-dotenv',
        'PyYAML',
        'SQLAlchemy>=2.0',
        'PyMySQL',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'cloudadaptor=cloudadaptor.cli:app'
        ]
    },
    description='Control-plane service for RKE and imported Kubernetes cluster lifecycle',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
