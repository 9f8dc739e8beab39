#!/usr/bin/env python3
# -*- coding: utf-8 -*-
#
# see http://docs.python.org/dist/dist.html
# https://setuptools.pypa.io/en/latest/userguide/quickstart.html
from setuptools import setup


setup(
    name='tcsp',
    version='0.1.0',
    description='tcsp - Python CSP channels with a cooperative worker pool, blocking tasks and select',
    author='John Markus Bjørndalen',
    author_email='jmb@cs.uit.no',
    license='MIT',
    packages=['tcsp', 'tcsp.plugNplay'],
    python_requires='>=3.10',
    install_requires=['msgspec'],
    extras_require={'test': ['pytest']},
    platforms=['any'],
)
