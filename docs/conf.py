# Configuration file for the Sphinx documentation builder.
#
# For the full list of built-in configuration values, see the documentation:
# https://www.sphinx-doc.org/en/master/usage/configuration.html

import sys

sys.path.append("../src")

# -- Project information -----------------------------------------------------

project = "scarank"
copyright = "scarank contributors"

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.autosummary",
    "sphinx.ext.mathjax",
    "sphinx.ext.viewcode",
]

templates_path = ["_templates"]
exclude_patterns = ["_build", "Thumbs.db", ".DS_Store"]

# -- Options for HTML output -------------------------------------------------

html_theme = "furo"

autoclass_content = "both"
autosummary_ignore_module_all = False
autodoc_default_options = {
    "member-order": "bysource",
    "undoc-members": True,
    "special-members": False,
}
autodoc_typehints = "description"
