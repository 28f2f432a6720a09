from setuptools import find_packages, setup

setup(
    name='edge-thing-access',
    version='1.0.0',
    description='Thing access runtime for edge IoT gateway device drivers (edge bus / D-Bus)',
    author='thingaccess contributors',
    author_email='',
    packages=find_packages(include=['thingaccess', 'thingaccess.*']),
    python_requires='>=3.11',
    install_requires=[
        'msgspec',
        'transitions',
        'tenacity',
        'dbus-fast',
        'prometheus-client>=0.20',
        'uvloop',
    ],
    extras_require={
        'test': [
            'pytest',
            'pytest-asyncio',
        ],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
)
