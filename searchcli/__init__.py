#!python


__project__ = "searchcli"
__version__ = "0.3.0"
__license__ = "Apache"
__description__ = "Launch, supervise and feed external mass spectrometry search engines"
__author__ = "searchcli developers"
__github__ = "https://github.com/searchcli/searchcli"
__keywords__ = [
    "bioinformatics",
    "proteomics",
    "search engine",
    "mgf",
]
__python_version__ = ">=3.10"
__classifiers__ = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "License :: OSI Approved :: Apache Software License",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]
__console_scripts__ = [
    "searchcli=searchcli.cli:run",
    "searchcli-paths=searchcli.cli:run_path_settings",
]
