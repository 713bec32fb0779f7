import os
import sys
sys.path.insert(0, os.path.abspath('..'))

from orbdet import __version__

project = 'orbdet'
copyright = '2026, Batuhan Akkova'
author = 'Batuhan Akkova'
release = __version__

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.mathjax',
]

# Google-style docstrings throughout the package
napoleon_google_docstring = True
napoleon_numpy_docstring = False

autodoc_member_order = 'bysource'
autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'show-inheritance': True,
}
# No kernels on the docs builder
autodoc_mock_imports = ['spiceypy']

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']
