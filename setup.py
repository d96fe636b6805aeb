from setuptools import setup

setup(
    name='aiosd',
    version='0.1.0',
    description="systemd socket activation and status notification for trio services",
    packages=['aiosd'],
    python_requires='>=3.11',
    install_requires=[
        'trio',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'aiosd = aiosd.__main__:main'
        ],
    },
)
