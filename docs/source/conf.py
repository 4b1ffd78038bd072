import os
import sys
sys.path.insert(0, os.path.abspath('../..'))  # points to repo root

# Environment the service modules read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Project information -----------------------------------------------------

project = 'Meeting Room Bookings Service'
copyright = '2025, Meeting Room Bookings contributors'
author = 'Meeting Room Bookings contributors'
release = '2.0.0'

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",   # numpy style docstrings used across the service
    "sphinx.ext.viewcode",
    "sphinx.ext.autosummary",
]
autosummary_generate = True
autodoc_mock_imports = ["psycopg2"]

templates_path = ['_templates']
exclude_patterns = []

# -- Options for HTML output -------------------------------------------------

html_theme = 'alabaster'
html_static_path = ['_static']
