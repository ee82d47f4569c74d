"""
chaindelve: discover on-chain contract graphs and measure how actions change them.
"""

__version__ = "0.1.0"
