"""
radlaudo - Template-grounded radiology report synthesis
"""

__version__ = "1.0.0"
__author__ = "radlaudo Team"
