"""
pahedl - resolve pahe.win links through Kwik and download the file
"""

__version__ = "1.0.0"
