import setuptools

setuptools.setup(
    name='gtfsrt-connections',
    version='0.1.0',
    description='GTFS-RT trip updates reconciled with static GTFS into Linked Connections',
    python_requires='>=3.9',
    install_requires=[
        'apache-beam[gcp]',
        'pyarrow',
        'pandas',
        'numpy',
        'requests',
        'gtfs-realtime-bindings',
        'protobuf',
        'google-cloud-storage',
        'python-dotenv',
        'tqdm',
        # zoneinfo needs the IANA database on hosts without one
        'tzdata',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'gtfsrt2lc=rt_connections.cli:run',
            'gtfsrt2json=rt_connections.cli:run_json',
        ],
    },
    packages=setuptools.find_packages(include=['rt_connections', 'rt_connections.*']),
)
