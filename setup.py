#!/usr/bin/env python
#

from setuptools import setup

from imapidle import __version__

setup(
    name="imapidle",
    version=__version__,
    description="IMAP IDLE support for a small synchronous IMAP client",
    long_description=(
        "imapidle lets an IMAP client block until the selected mailbox "
        "changes, re-issuing IDLE before the server's inactivity timeout."
    ),
    author="Scanner",
    author_email="scanner@apricot.com",
    packages=["imapidle"],
    python_requires=">=3.10",
    install_requires=[
        "docopt",
        "python-dotenv",
        "python-json-logger>=3.1",
        "rich",
    ],
    extras_require={
        "test": ["pytest", "pytest-mock", "faker", "trustme"],
    },
    entry_points={
        "console_scripts": ["imapidle-watch=imapidle.watch:main"],
    },
)
