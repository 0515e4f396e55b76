"""
Setup script for EchoMesh - password-keyed encrypted rooms over P2P transports.

This package provides:
- Argon2id room key derivation from a room id and a shared password
- XChaCha20-Poly1305 wire messages with optional HMAC hardening
- Replay protection scoped to the current key epoch
- An asyncio room session with cooldown, expiry sweep and local commands
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='echomesh',
    version='1.0.0',
    author='echomesh contributors',
    description='Password-keyed end-to-end encrypted rooms over untrusted peer-to-peer transports',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.8',
    install_requires=[
        'cryptography>=42.0.4',
        'argon2-cffi>=23.1.0',
        'PyNaCl>=1.5.0',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.21.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'echomesh=echomesh.main:main',
        ],
    },
)
