from setuptools import setup

setup(
    name='sshcourier',
    version='1.0.0',
    description='SSH connection profiles with automated passphrase, sudo and startup-command delivery',
    packages=['sshcourier'],
    python_requires='>=3.8',
    install_requires=[
        'keyring',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'sshcourier=sshcourier.app:main',
        ],
    },
)
