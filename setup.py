from setuptools import setup, find_namespace_packages

setup(
    name='creatartis-base',
    version='0.1.0',

    package_dir={'': 'src'},
    packages=find_namespace_packages(where='src', include=['creatartis.*']),

    install_requires=[
        'jsonschema>=4, <5',
        'termcolor>=1',
        'colorama>=0.4.6, <2',
        'atmfjstc-error-utils>=1, <2',
    ],
    extras_require={
        'test': ['pytest'],
    },

    zip_safe=True,

    description="Base library with callback-based futures, future combinators and a worker pool bridge",

    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Typing :: Typed",
    ],
    python_requires='>=3.9',
)
