# Copyright 2022 Ashley R. Thomas
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import setuptools

setuptools.setup(
    name="pgcarpenter-pkg",
    version="0.1.0",
    author="Ashley R. Thomas",
    author_email="ashley.r.thomas.701@gmail.com",
    description=(
        "pgcarpenter takes online physical backups of a running PostgreSQL "
        "data directory and stores them in cloud object storage."
    ),
    entry_points = {
        'console_scripts': ['pgcarpenter=pgcarpenter.tools.backup.command_line:main']
    },
    long_description="""
pgcarpenter brackets a copy of a live PostgreSQL data directory with the
low-level backup API (pg_start_backup/pg_stop_backup), uploads the files
concurrently (LZ4 compressing large ones) to any apache-libcloud storage
provider, and records completion markers so a restore can find the latest
successful backup.

Install: `pip install pgcarpenter-pkg`
""",
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: POSIX",
    ],
    package_dir={"": "src"},
    packages=setuptools.find_namespace_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "keyring >= 23.5.0",
        "apache-libcloud >= 3.5.1",
        "psycopg2-binary >= 2.9.3",
        "lz4 >= 4.0.0",
    ],
    extras_require={
        "test": [
            "pytest >= 7.1.2",
        ],
    },
)
