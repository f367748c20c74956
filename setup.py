#!/usr/bin/env python3
"""kalman-temp - Setup Configuration"""

from setuptools import setup, find_packages
import os

def get_version():
    return '1.0.0'

def get_long_description():
    readme_file = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_file):
        with open(readme_file, 'r', encoding='utf-8') as f:
            return f.read()
    return ''

setup(
    name='kalman-temp',
    version=get_version(),
    description='Scalar Kalman estimation with slow/fast multiple-model fusion',
    long_description=get_long_description(),
    long_description_content_type='text/markdown',
    packages=find_packages(include=['kalman_temp', 'kalman_temp.*']),
    python_requires='>=3.9',
    install_requires=[
        'numpy>=1.21.0',
        'scipy>=1.7.0',
        'pyyaml>=5.4',
    ],
    extras_require={
        'dev': ['pytest>=7.0.0', 'pytest-cov>=4.0.0'],
    },
    entry_points={
        'console_scripts': ['kalman-temp-demo=kalman_temp.demo:main'],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'License :: OSI Approved :: GNU Affero General Public License v3',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    keywords=['kalman-filter', 'mmae', 'multiple-model', 'estimation', 'sensor', 'temperature'],
)
